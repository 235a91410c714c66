"""Implicit model routing.

Selects a registered model by capability, latency class, backend and
minimum context window, and routes requests to it.
"""

from openllm_client.routing.router import RequestRouter
from openllm_client.routing.selector import (
    Catalog,
    filter_models,
    matches,
    select_model,
)

__all__ = [
    "Catalog",
    "RequestRouter",
    "filter_models",
    "matches",
    "select_model",
]
