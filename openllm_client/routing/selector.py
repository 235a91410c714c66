"""Capability-based model selection.

A single linear scan over the catalog in its enumeration order: the first
entry that satisfies every constraint in the SelectionCriteria wins. There
is no scoring and no ranking by closeness of fit.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from openllm_client.schemas.models import ModelDescriptor
from openllm_client.schemas.routing import SelectionCriteria


@runtime_checkable
class Catalog(Protocol):
    """Read access to the model catalog that the selector and router need."""

    def list(self) -> list[ModelDescriptor]:
        """All entries in enumeration order."""
        ...

    def get(self, model_id: str) -> ModelDescriptor | None:
        """The entry for ``model_id``, or None."""
        ...


def matches(model: ModelDescriptor, criteria: SelectionCriteria) -> bool:
    """Whether ``model`` satisfies every constraint set in ``criteria``."""
    if criteria.capability is not None and criteria.capability not in model.capabilities:
        return False
    if criteria.latency is not None and model.latency != criteria.latency:
        return False
    if criteria.inference is not None and model.inference != criteria.inference:
        return False
    if criteria.min_context is not None and model.context < criteria.min_context:
        return False
    if criteria.loaded is not None and model.loaded != criteria.loaded:
        return False
    return True


def _snapshot(catalog: Catalog | Iterable[ModelDescriptor]) -> list[ModelDescriptor]:
    # Copy before scanning so concurrent add/remove cannot disturb the scan
    if isinstance(catalog, Catalog):
        return list(catalog.list())
    return list(catalog)


def filter_models(
    catalog: Catalog | Iterable[ModelDescriptor],
    criteria: SelectionCriteria | None = None,
) -> list[ModelDescriptor]:
    """Every entry matching ``criteria``, in enumeration order."""
    criteria = criteria or SelectionCriteria()
    return [m for m in _snapshot(catalog) if matches(m, criteria)]


def select_model(
    catalog: Catalog | Iterable[ModelDescriptor],
    criteria: SelectionCriteria | None = None,
) -> ModelDescriptor | None:
    """Return the first entry matching ``criteria``, or None.

    Args:
        catalog: A Catalog, or any iterable of ModelDescriptor.
        criteria: Constraints to satisfy. None (or all fields unset) matches
            the first entry.

    Returns:
        The first matching ModelDescriptor, or None when nothing matches.
    """
    criteria = criteria or SelectionCriteria()
    for model in _snapshot(catalog):
        if matches(model, criteria):
            return model
    return None
