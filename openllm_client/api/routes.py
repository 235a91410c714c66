"""FastAPI routes that expose the engine client over HTTP.

create_router() builds an APIRouter under the configured prefix that
passes each call through to the engine. When ``modelrouter`` is enabled
and a registry is supplied, it also mounts ``POST {prefix}/router/chat``,
which picks a model from the registry before calling the engine.

Requires the 'api' optional dependency group:
    pip install openllm-client[api]
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from openllm_client import __version__
from openllm_client.client import OpenLLMClient
from openllm_client.errors import (
    DeadlineExceededError,
    NoMatchingModelError,
    OpenLLMError,
    StreamCancelledError,
)
from openllm_client.registry import ModelRegistry
from openllm_client.routing.router import RequestRouter
from openllm_client.schemas.config import ClientConfig
from openllm_client.schemas.inference import InferenceRequest, InferenceResponse
from openllm_client.schemas.models import (
    HealthResponse,
    LoadModelRequest,
    LoadModelResponse,
    ModelDescriptor,
    RegisterModelRequest,
    RegisterModelResponse,
    UnloadModelResponse,
)
from openllm_client.schemas.routing import RouteRequest

logger = logging.getLogger(__name__)


def _status_for(error: OpenLLMError) -> int:
    if error.status_code:
        return error.status_code
    if isinstance(error, NoMatchingModelError):
        return 404
    if isinstance(error, DeadlineExceededError):
        return 504
    if isinstance(error, StreamCancelledError):
        return 503
    return 502


async def _openllm_error_handler(request: Request, exc: OpenLLMError) -> JSONResponse:
    status = _status_for(exc)
    logger.warning("%s %s failed (%d): %s", request.method, request.url.path, status, exc.message)
    return JSONResponse(status_code=status, content={"error": exc.to_dict()})


def create_router(
    config: ClientConfig | None = None,
    *,
    registry: ModelRegistry | None = None,
    client: OpenLLMClient | None = None,
) -> APIRouter:
    """Build the pass-through routes for one engine."""
    config = config or ClientConfig()
    client = client or OpenLLMClient(config)
    router = APIRouter(prefix=config.prefix)

    @router.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return await client.health()

    @router.get("/models", response_model=list[ModelDescriptor])
    async def list_models() -> list[ModelDescriptor]:
        result = await client.list_models()
        return result.models

    @router.post("/models/register", response_model=RegisterModelResponse)
    async def register_model(body: RegisterModelRequest) -> RegisterModelResponse:
        return await client.register_model(body)

    @router.post("/models/load", response_model=LoadModelResponse)
    async def load_model(body: LoadModelRequest) -> LoadModelResponse:
        return await client.load_model(body)

    @router.post("/models/unload/{model_id}", response_model=UnloadModelResponse)
    async def unload_model(model_id: str) -> UnloadModelResponse:
        return await client.unload_model(model_id)

    @router.post("/inference", response_model=InferenceResponse)
    async def inference(body: InferenceRequest) -> InferenceResponse:
        return await client.inference(body)

    if config.modelrouter and registry is not None:
        request_router = RequestRouter(registry, client)

        @router.post("/router/chat", response_model=InferenceResponse)
        async def router_chat(body: RouteRequest) -> InferenceResponse:
            return await request_router.route(body)

    elif config.modelrouter:
        logger.warning("modelrouter is enabled but no registry was given; /router/chat not mounted")

    return router


def install_error_handlers(app: FastAPI) -> None:
    """Return OpenLLMErrors as JSON ``{"error": {...}}`` with a matching status."""
    app.add_exception_handler(OpenLLMError, _openllm_error_handler)


def mount_openllm(
    app: FastAPI,
    config: ClientConfig | None = None,
    *,
    registry: ModelRegistry | None = None,
    client: OpenLLMClient | None = None,
) -> FastAPI:
    """Add the OpenLLM routes and error handling to an existing app."""
    app.include_router(create_router(config, registry=registry, client=client))
    install_error_handlers(app)
    return app


def create_app(
    config: ClientConfig | None = None,
    *,
    registry: ModelRegistry | None = None,
    client: OpenLLMClient | None = None,
) -> FastAPI:
    """Create a standalone FastAPI app serving the OpenLLM routes.

    The engine client is closed when the app shuts down.
    """
    config = config or ClientConfig()
    client = client or OpenLLMClient(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await client.aclose()

    app = FastAPI(
        title="OpenLLM Gateway",
        version=__version__,
        lifespan=lifespan,
    )
    return mount_openllm(app, config, registry=registry, client=client)
