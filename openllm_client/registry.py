"""Model registry and TOML catalog loader.

ModelRegistry is the in-memory catalog the router selects from. Entries
keep insertion order, which is the enumeration order the selector scans.
load_registry() builds one from the ``[models.<key>]`` tables of a
models.toml file.
"""

from __future__ import annotations

import logging
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from openllm_client.routing.selector import filter_models, select_model
from openllm_client.schemas.models import (
    DEFAULT_SIZE_BYTES,
    ModelDescriptor,
    RegistryEntryInput,
)
from openllm_client.schemas.routing import SelectionCriteria

logger = logging.getLogger(__name__)

# Default config directory relative to the package
_CONFIG_DIR = Path(__file__).parent / "config"


class ModelRegistry:
    """Ordered, in-memory model catalog.

    Satisfies the Catalog protocol (list/get) used by the selector and
    router. Mutations replace entries rather than editing them in place,
    so a ModelDescriptor handed out earlier never changes under a reader.
    """

    def __init__(
        self,
        entries: Mapping[str, RegistryEntryInput | dict[str, Any]] | None = None,
    ) -> None:
        self._entries: dict[str, ModelDescriptor] = {}
        for key, entry in (entries or {}).items():
            self.add(key, entry)

    # ── Catalog protocol ─────────────────────────────────────────

    def list(self) -> list[ModelDescriptor]:
        """All entries in insertion order (a copy)."""
        return list(self._entries.values())

    def get(self, model_id: str) -> ModelDescriptor | None:
        return self._entries.get(model_id)

    # ── Queries ──────────────────────────────────────────────────

    def has(self, model_id: str) -> bool:
        return model_id in self._entries

    def count(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._entries

    def find(self, criteria: SelectionCriteria | None = None) -> list[ModelDescriptor]:
        """Every entry matching ``criteria``, in insertion order."""
        return filter_models(self, criteria)

    def find_one(self, criteria: SelectionCriteria | None = None) -> ModelDescriptor | None:
        """The first entry matching ``criteria``, or None."""
        return select_model(self, criteria)

    # ── Mutation ─────────────────────────────────────────────────

    def add(
        self, model_id: str, entry: RegistryEntryInput | dict[str, Any],
    ) -> ModelDescriptor:
        """Register a new entry under ``model_id``.

        The engine-side name is taken from the entry's own ``id``; the
        entry starts unloaded.

        Raises:
            ValueError: If ``model_id`` is already registered.
        """
        if model_id in self._entries:
            raise ValueError(f"Model with id '{model_id}' already exists")
        source = (
            entry if isinstance(entry, RegistryEntryInput)
            else RegistryEntryInput.model_validate(entry)
        )
        model = ModelDescriptor(
            id=model_id,
            name=source.id,
            inference=source.inference,
            context=source.context,
            quant=source.quant,
            capabilities=list(source.capabilities),
            latency=source.latency,
            size_bytes=DEFAULT_SIZE_BYTES,
            loaded=False,
        )
        self._entries[model_id] = model
        logger.debug("Registered model %s (%s)", model_id, source.inference.value)
        return model

    def update(self, model_id: str, **changes: Any) -> ModelDescriptor:
        """Replace an entry with a copy carrying ``changes``. The id is fixed.

        Raises:
            KeyError: If ``model_id`` is not registered.
        """
        existing = self._entries.get(model_id)
        if existing is None:
            raise KeyError(f"Model with id '{model_id}' not found")
        changes.pop("id", None)
        merged = {**existing.model_dump(), **changes, "id": model_id}
        updated = ModelDescriptor.model_validate(merged)
        self._entries[model_id] = updated
        return updated

    def remove(self, model_id: str) -> bool:
        """Drop an entry. Returns False if it was not registered."""
        return self._entries.pop(model_id, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    # ── Serialization ────────────────────────────────────────────

    def to_dict(self) -> dict[str, ModelDescriptor]:
        return dict(self._entries)

    def from_dict(self, data: Mapping[str, ModelDescriptor | dict[str, Any]]) -> None:
        """Replace the whole catalog with ``data``."""
        self._entries = {
            key: (
                value if isinstance(value, ModelDescriptor)
                else ModelDescriptor.model_validate(value)
            )
            for key, value in data.items()
        }


def load_registry(config_path: Path | None = None) -> ModelRegistry:
    """Load the model catalog from a TOML file.

    Args:
        config_path: Path to models.toml. Defaults to
            openllm_client/config/models.toml.

    Returns:
        A ModelRegistry with one entry per ``[models.<key>]`` table, in
        file order.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the TOML structure is invalid.
    """
    path = config_path or _CONFIG_DIR / "models.toml"
    if not path.exists():
        raise FileNotFoundError(f"Model catalog not found: {path}")

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    models_section = raw.get("models")
    if not models_section or not isinstance(models_section, dict):
        raise ValueError(f"No [models] section found in {path}")

    registry = ModelRegistry()
    for key, entry in models_section.items():
        if not isinstance(entry, dict):
            continue
        # The table key doubles as the engine id unless one is given
        entry.setdefault("id", key)
        registry.add(key, entry)

    return registry
