"""Client settings loader.

Settings come from three places, highest priority first:
  1. Environment variables (OPENLLM_ENGINE, OPENLLM_TIMEOUT, OPENLLM_PREFIX)
  2. .env in the current directory (only fills variables not already set)
  3. The [client] table of defaults.toml
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path

from openllm_client.schemas.config import ClientConfig

logger = logging.getLogger(__name__)

# Default config directory relative to the package
_CONFIG_DIR = Path(__file__).parent / "config"

ENGINE_ENV = "OPENLLM_ENGINE"
TIMEOUT_ENV = "OPENLLM_TIMEOUT"
PREFIX_ENV = "OPENLLM_PREFIX"


def load_env_file(path: Path | None = None) -> None:
    """Parse a simple KEY=VALUE .env file and set vars that aren't already set."""
    env_file = path or Path.cwd() / ".env"
    if not env_file.is_file():
        return
    try:
        for line in env_file.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip("'\"")
            if key and not os.environ.get(key):
                os.environ[key] = value
                logger.debug("Loaded %s from %s", key, env_file)
    except OSError:
        logger.debug("Could not read %s", env_file)


def load_client_config(config_path: Path | None = None) -> ClientConfig:
    """Load client settings from TOML, then apply environment overrides.

    Args:
        config_path: Path to defaults.toml. Defaults to
            openllm_client/config/defaults.toml.

    Returns:
        The resolved ClientConfig.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If a setting fails validation.
    """
    path = config_path or _CONFIG_DIR / "defaults.toml"
    if not path.exists():
        raise FileNotFoundError(f"Client config not found: {path}")

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    section = dict(raw.get("client", {}))

    if engine := os.environ.get(ENGINE_ENV):
        section["engine"] = engine
    if timeout := os.environ.get(TIMEOUT_ENV):
        try:
            section["timeout"] = float(timeout)
        except ValueError:
            raise ValueError(f"{TIMEOUT_ENV} must be a number, got '{timeout}'") from None
    if prefix := os.environ.get(PREFIX_ENV):
        section["prefix"] = prefix

    return ClientConfig(**section)
