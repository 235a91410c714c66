"""Client configuration schema."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class ClientConfig(BaseModel):
    """Connection settings for the engine and the mounted routes.

    Loaded from defaults.toml and overridden by environment variables
    and CLI flags.
    """

    engine: str = Field(
        default="8080",
        description="Engine port (e.g. '8080') or full base URL (e.g. 'http://gpu-box:8080')",
    )
    timeout: float = Field(
        default=30.0, gt=0, description="Deadline in seconds for each engine call"
    )
    prefix: str = Field(default="/openllm", description="Path prefix for mounted routes")
    modelrouter: bool = Field(
        default=False, description="Whether to mount the implicit routing endpoint"
    )

    @field_validator("engine", mode="before")
    @classmethod
    def _coerce_port(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

    @property
    def base_url(self) -> str:
        """Engine base URL; a bare port means localhost."""
        engine = self.engine.strip().rstrip("/")
        if engine.isdigit():
            return f"http://localhost:{engine}"
        return engine
