"""openllm-client schema definitions.

All Pydantic v2 models exchanged with the engine, the registry and the router.
"""

from openllm_client.schemas.config import ClientConfig
from openllm_client.schemas.inference import (
    InferenceRequest,
    InferenceResponse,
    StreamToken,
)
from openllm_client.schemas.models import (
    HealthResponse,
    InferenceBackend,
    LatencyProfile,
    LoadModelRequest,
    LoadModelResponse,
    ModelCapability,
    ModelDescriptor,
    ModelListResponse,
    RegisterModelRequest,
    RegisterModelResponse,
    RegistryEntryInput,
    UnloadModelResponse,
)
from openllm_client.schemas.routing import RouteOptions, RouteRequest, SelectionCriteria

__all__ = [
    "ClientConfig",
    "HealthResponse",
    "InferenceBackend",
    "InferenceRequest",
    "InferenceResponse",
    "LatencyProfile",
    "LoadModelRequest",
    "LoadModelResponse",
    "ModelCapability",
    "ModelDescriptor",
    "ModelListResponse",
    "RegisterModelRequest",
    "RegisterModelResponse",
    "RegistryEntryInput",
    "RouteOptions",
    "RouteRequest",
    "SelectionCriteria",
    "StreamToken",
    "UnloadModelResponse",
]
