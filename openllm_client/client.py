"""Engine client: model lifecycle, inference and streaming inference.

OpenLLMClient is the only way the rest of the package talks to the engine.
Request/response calls raise classified OpenLLMErrors; streaming calls
report through callbacks via a TokenStreamController created per call.
"""

from __future__ import annotations

import httpx

from openllm_client.schemas.config import ClientConfig
from openllm_client.schemas.inference import InferenceRequest, InferenceResponse
from openllm_client.schemas.models import (
    HealthResponse,
    LoadModelRequest,
    LoadModelResponse,
    ModelListResponse,
    RegisterModelRequest,
    RegisterModelResponse,
    UnloadModelResponse,
)
from openllm_client.streaming.controller import (
    CompleteCallback,
    ErrorCallback,
    TokenCallback,
    TokenStreamController,
)
from openllm_client.transport import EngineTransport


class OpenLLMClient:
    """Async client for one inference engine.

    Use as ``async with OpenLLMClient(config) as client:`` or call
    ``aclose()`` when done. Pass ``transport`` (e.g. httpx.MockTransport)
    to replace the network layer.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or ClientConfig()
        self._transport = EngineTransport(
            self._config.base_url,
            self._config.timeout,
            transport=transport,
        )

    async def __aenter__(self) -> OpenLLMClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._transport.aclose()

    # ── Settings ─────────────────────────────────────────────────

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def transport(self) -> EngineTransport:
        return self._transport

    @property
    def base_url(self) -> str:
        return self._transport.base_url

    @base_url.setter
    def base_url(self, value: str) -> None:
        self._transport.base_url = value

    @property
    def timeout(self) -> float:
        """Deadline in seconds applied to each call."""
        return self._transport.timeout

    @timeout.setter
    def timeout(self, value: float) -> None:
        self._transport.timeout = value

    # ── Lifecycle ────────────────────────────────────────────────

    async def health(self) -> HealthResponse:
        response = await self._transport.request("GET", "/health")
        return HealthResponse.model_validate(response.json())

    async def list_models(self) -> ModelListResponse:
        response = await self._transport.request("GET", "/v1/models")
        return ModelListResponse.model_validate(response.json())

    async def register_model(self, request: RegisterModelRequest) -> RegisterModelResponse:
        response = await self._transport.request(
            "POST", "/v1/models/register",
            json=request.model_dump(mode="json", exclude_none=True),
        )
        return RegisterModelResponse.model_validate(response.json())

    async def load_model(self, request: LoadModelRequest) -> LoadModelResponse:
        response = await self._transport.request(
            "POST", "/v1/models/load", json=request.model_dump(),
        )
        return LoadModelResponse.model_validate(response.json())

    async def unload_model(self, model_id: str) -> UnloadModelResponse:
        response = await self._transport.request(
            "POST", f"/v1/models/unload/{model_id}",
        )
        return UnloadModelResponse.model_validate(response.json())

    # ── Inference ────────────────────────────────────────────────

    async def inference(self, request: InferenceRequest) -> InferenceResponse:
        """Run one request/response inference.

        Raises:
            ModelNotFoundError: The engine does not know the model.
            ModelNotLoadedError: The model is registered but not loaded.
            DeadlineExceededError: The call ran past the timeout.
            OpenLLMError: Any other classified failure.
        """
        response = await self._transport.request(
            "POST", "/v1/inference", json=request.to_payload(),
        )
        return InferenceResponse.model_validate(response.json())

    def stream_controller(
        self,
        request: InferenceRequest,
        on_token: TokenCallback,
        *,
        on_complete: CompleteCallback | None = None,
        on_error: ErrorCallback | None = None,
        timeout: float | None = None,
    ) -> TokenStreamController:
        """Build (but do not start) the controller for one streaming call.

        Keep the controller to cancel() the stream from another task.
        """
        return TokenStreamController(
            self._transport,
            request,
            on_token=on_token,
            on_complete=on_complete,
            on_error=on_error,
            timeout=timeout,
        )

    async def inference_stream(
        self,
        request: InferenceRequest,
        on_token: TokenCallback,
        *,
        on_complete: CompleteCallback | None = None,
        on_error: ErrorCallback | None = None,
        timeout: float | None = None,
    ) -> InferenceResponse | None:
        """Stream one inference, delivering each token to ``on_token``.

        Exactly one of ``on_complete`` / ``on_error`` fires. Without an
        ``on_error`` the failure is raised instead.

        Returns:
            The aggregate InferenceResponse, or None if the stream failed.
        """
        controller = self.stream_controller(
            request,
            on_token,
            on_complete=on_complete,
            on_error=on_error,
            timeout=timeout,
        )
        return await controller.run()


def create_client(
    config: ClientConfig | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> OpenLLMClient:
    """Create an OpenLLMClient from ``config`` (defaults when omitted)."""
    return OpenLLMClient(config, transport=transport)
