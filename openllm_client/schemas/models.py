"""Model catalog schemas.

Defines the registry entry (ModelDescriptor) read by the selector, the
enums for backend, capability and latency class, and the request/response
envelopes for the engine's model-lifecycle endpoints.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# Default on-disk size reported for entries registered without one
DEFAULT_SIZE_BYTES = 4_000_000_000


class InferenceBackend(StrEnum):
    """Backend kind that serves a registered model."""

    OLLAMA = "ollama"
    LLAMA = "llama"
    HUGGINGFACE = "huggingface"
    OPENAI = "openai"


class ModelCapability(StrEnum):
    """Capabilities a model can declare."""

    CHAT = "chat"
    VISION = "vision"
    EMBEDDING = "embedding"
    COMPLETION = "completion"


class LatencyProfile(StrEnum):
    """Coarse latency class of a model."""

    EXTREME = "extreme"
    FAST = "fast"
    SLOW = "slow"


class RegistryEntryInput(BaseModel):
    """A catalog entry as written in models.toml or passed to ModelRegistry.add()."""

    id: str = Field(description="Model identifier understood by the engine")
    inference: InferenceBackend = Field(description="Backend kind")
    context: int = Field(gt=0, description="Context window size in tokens")
    quant: str | None = Field(default=None, description="Quantization label (e.g. 'Q4_K_M')")
    capabilities: list[ModelCapability] = Field(
        default_factory=list, description="Declared capabilities"
    )
    latency: LatencyProfile | None = Field(default=None, description="Latency class")


class ModelDescriptor(BaseModel):
    """A registered model as seen by the selector and the engine.

    Owned by the registry. The selector only reads these; updates go
    through ModelRegistry.update(), which replaces the entry.
    """

    id: str = Field(description="Registry key and engine model identifier")
    name: str = Field(description="Human-friendly model name")
    inference: InferenceBackend = Field(description="Backend kind")
    context: int = Field(gt=0, description="Context window size in tokens")
    quant: str | None = Field(default=None, description="Quantization label")
    capabilities: list[ModelCapability] = Field(
        default_factory=list, description="Declared capabilities"
    )
    latency: LatencyProfile | None = Field(default=None, description="Latency class")
    size_bytes: int = Field(
        default=DEFAULT_SIZE_BYTES, ge=0, description="Model size on disk in bytes"
    )
    loaded: bool = Field(default=False, description="Whether the engine has it loaded")
    loaded_at: datetime | None = Field(
        default=None, description="When the model was last loaded"
    )


# ── Lifecycle envelopes ──────────────────────────────────────────


class HealthResponse(BaseModel):
    """Engine liveness report."""

    status: str
    timestamp: str
    models_loaded: int = Field(ge=0)


class ModelListResponse(BaseModel):
    """All models known to the engine."""

    models: list[ModelDescriptor] = Field(default_factory=list)


class RegisterModelRequest(BaseModel):
    """Body for POST /v1/models/register."""

    id: str
    name: str
    inference: InferenceBackend
    context: int = Field(gt=0)
    quant: str | None = None
    capabilities: list[ModelCapability] = Field(default_factory=list)
    latency: LatencyProfile | None = None
    size_bytes: int | None = Field(default=None, ge=0)


class RegisterModelResponse(BaseModel):
    """Engine reply to a register call."""

    success: bool
    model: ModelDescriptor
    message: str


class LoadModelRequest(BaseModel):
    """Body for POST /v1/models/load."""

    model_config = ConfigDict(protected_namespaces=())

    model_id: str


class LoadModelResponse(BaseModel):
    """Engine reply to a load call."""

    model_config = ConfigDict(protected_namespaces=())

    success: bool
    model_id: str
    message: str


class UnloadModelResponse(BaseModel):
    """Engine reply to an unload call."""

    model_config = ConfigDict(protected_namespaces=())

    success: bool
    model_id: str
    message: str
