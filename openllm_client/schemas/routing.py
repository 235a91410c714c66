"""Routing schemas for implicit model selection.

SelectionCriteria is a pure filter: every field left as None leaves that
dimension unconstrained. RouteRequest is the body accepted by the router
endpoint and RequestRouter.route().
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from openllm_client.schemas.models import (
    InferenceBackend,
    LatencyProfile,
    ModelCapability,
)


class SelectionCriteria(BaseModel):
    """Constraints a catalog entry must satisfy to be selected."""

    capability: ModelCapability | None = Field(
        default=None, description="Capability the model must declare"
    )
    latency: LatencyProfile | None = Field(default=None, description="Required latency class")
    inference: InferenceBackend | None = Field(default=None, description="Required backend kind")
    min_context: int | None = Field(
        default=None, ge=0, description="Minimum context window size in tokens"
    )
    loaded: bool | None = Field(
        default=None, description="Require the model to be loaded (True) or unloaded (False)"
    )


class RouteOptions(BaseModel):
    """Model hints and generation options for a routed request."""

    model: str | None = Field(default=None, description="Explicit model id (takes precedence)")
    capability: ModelCapability = Field(
        default=ModelCapability.CHAT, description="Capability required for implicit selection"
    )
    latency: LatencyProfile | None = None
    inference: InferenceBackend | None = None
    min_context: int | None = Field(default=None, ge=0)
    max_tokens: int | None = Field(default=None, gt=0)
    temperature: float | None = Field(default=None, ge=0.0)

    def criteria(self) -> SelectionCriteria:
        """Selection constraints implied by these options."""
        return SelectionCriteria(
            capability=self.capability,
            latency=self.latency,
            inference=self.inference,
            min_context=self.min_context,
        )


class RouteRequest(BaseModel):
    """A prompt plus either an explicit model or selection hints."""

    prompt: str = Field(description="Prompt text")
    options: RouteOptions = Field(default_factory=RouteOptions)
