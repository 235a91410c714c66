"""Inference request and streaming schemas.

StreamToken is the unit carried by each ``data:`` frame of the streaming
endpoint. InferenceResponse doubles as the aggregate result a stream
produces once its completion-flagged token arrives.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class InferenceRequest(BaseModel):
    """A single inference call. Immutable once submitted."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_id: str = Field(description="Engine model identifier")
    prompt: str = Field(description="Prompt text")
    max_tokens: int | None = Field(default=None, gt=0, description="Upper bound on generated tokens")
    temperature: float | None = Field(default=None, ge=0.0, description="Sampling temperature")

    def to_payload(self) -> dict:
        """JSON body for the engine, omitting unset optional fields."""
        return self.model_dump(exclude_none=True)


class StreamToken(BaseModel):
    """One token decoded from the streaming endpoint."""

    token: str = Field(description="Text fragment")
    token_id: int = Field(ge=0, description="Monotonic identifier within one stream")
    complete: bool = Field(default=False, description="True on the final token of a stream")


class InferenceResponse(BaseModel):
    """Result of an inference call, or the aggregate of a finished stream."""

    model_config = ConfigDict(protected_namespaces=())

    model_id: str = Field(description="Model that produced the text")
    text: str = Field(description="Generated text, fragments joined in emission order")
    tokens_generated: int = Field(ge=0, description="Number of tokens emitted")
    finish_reason: str = Field(default="stop", description="Why generation ended")
