"""openllm-client: client façade for a remote OpenLLM inference engine."""

__version__ = "0.1.0"

from .client import OpenLLMClient, create_client
from .errors import OpenLLMError
from .registry import ModelRegistry, load_registry
from .routing import RequestRouter, select_model
from .streaming import FrameDecoder, StreamState, TokenStreamController

__all__ = [
    "FrameDecoder",
    "ModelRegistry",
    "OpenLLMClient",
    "OpenLLMError",
    "RequestRouter",
    "StreamState",
    "TokenStreamController",
    "create_client",
    "load_registry",
    "select_model",
]
