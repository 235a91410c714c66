"""Request router: resolve a model for a prompt, then run inference.

An explicit model id takes precedence and must exist in the catalog;
otherwise the selector picks the first entry matching the request's
options. Both failure cases raise NoMatchingModelError before the engine
is contacted.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from openllm_client.errors import NoMatchingModelError
from openllm_client.routing.selector import Catalog, select_model
from openllm_client.schemas.inference import InferenceRequest, InferenceResponse
from openllm_client.schemas.models import ModelDescriptor
from openllm_client.schemas.routing import RouteRequest, SelectionCriteria

if TYPE_CHECKING:
    from openllm_client.client import OpenLLMClient
    from openllm_client.streaming.controller import (
        CompleteCallback,
        ErrorCallback,
        TokenCallback,
    )

logger = logging.getLogger(__name__)


class RequestRouter:
    """Implicit model routing on top of an OpenLLMClient."""

    def __init__(self, catalog: Catalog, client: OpenLLMClient) -> None:
        self._catalog = catalog
        self._client = client

    def resolve(
        self,
        model: str | None = None,
        criteria: SelectionCriteria | None = None,
    ) -> ModelDescriptor:
        """Pick the catalog entry that should serve a request.

        Raises:
            NoMatchingModelError: If ``model`` is not in the catalog, or no
                entry satisfies ``criteria``.
        """
        if model:
            entry = self._catalog.get(model)
            if entry is None:
                raise NoMatchingModelError(
                    f"Model '{model}' not found in registry", model_id=model,
                )
            logger.info("Routing to explicit model %s", entry.id)
            return entry

        entry = select_model(self._catalog, criteria)
        if entry is None:
            raise NoMatchingModelError(
                "No suitable model found for the given constraints"
            )
        logger.info("Routing to %s (criteria: %s)", entry.id, _describe(criteria))
        return entry

    def build_request(self, request: RouteRequest) -> InferenceRequest:
        """Resolve the model and build the engine request for ``request``."""
        options = request.options
        entry = self.resolve(options.model, options.criteria())
        return InferenceRequest(
            model_id=entry.id,
            prompt=request.prompt,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
        )

    async def route(self, request: RouteRequest) -> InferenceResponse:
        """Resolve a model and run a request/response inference on it."""
        return await self._client.inference(self.build_request(request))

    async def route_stream(
        self,
        request: RouteRequest,
        on_token: TokenCallback,
        *,
        on_complete: CompleteCallback | None = None,
        on_error: ErrorCallback | None = None,
        timeout: float | None = None,
    ) -> InferenceResponse | None:
        """Resolve a model and stream an inference from it.

        Resolution failures raise immediately; stream failures follow the
        controller's callback rules.
        """
        return await self._client.inference_stream(
            self.build_request(request),
            on_token,
            on_complete=on_complete,
            on_error=on_error,
            timeout=timeout,
        )


def _describe(criteria: SelectionCriteria | None) -> str:
    if criteria is None:
        return "none"
    fields = criteria.model_dump(exclude_none=True)
    return ", ".join(f"{k}={v}" for k, v in fields.items()) or "none"
