"""Exception hierarchy for engine calls, streams and routing.

Every failure surfaced to callers is an OpenLLMError carrying a stable
``code`` and, where it came from the engine, the HTTP ``status_code``.
classify_upstream_error() turns a non-2xx engine reply into the most
specific subclass it can.
"""

from __future__ import annotations

import json
import re

# Legacy engine messages name the model as: Model '<id>' ...
_MODEL_REF_RE = re.compile(r"Model '([^']+)'")


class OpenLLMError(Exception):
    """Base exception for all client errors."""

    code = "API_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        model_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.model_id = model_id

    def to_dict(self) -> dict:
        """Serializable form used by the HTTP routes."""
        return {
            "code": self.code,
            "message": self.message,
            "model_id": self.model_id,
        }


class UpstreamError(OpenLLMError):
    """The engine rejected the request with a non-2xx status."""


class ModelNotFoundError(UpstreamError):
    """The engine has no catalog entry for the requested model."""

    code = "MODEL_NOT_FOUND"


class ModelNotLoadedError(UpstreamError):
    """The model is registered but not loaded."""

    code = "MODEL_NOT_LOADED"


class InferenceError(OpenLLMError):
    """The engine failed while generating."""

    code = "INFERENCE_ERROR"


class DeadlineExceededError(OpenLLMError):
    """The call's deadline elapsed before it finished."""

    code = "DEADLINE_EXCEEDED"


class StreamCancelledError(OpenLLMError):
    """The caller aborted the call."""

    code = "CANCELLED"


class UnexpectedTerminationError(OpenLLMError):
    """The byte stream closed before a completion-flagged token arrived."""

    code = "UNEXPECTED_TERMINATION"


class MalformedFrameError(OpenLLMError):
    """A single streaming record could not be decoded.

    Never raised out of the frame decoder; it is logged and the record
    skipped.
    """

    code = "MALFORMED_FRAME"


class NoMatchingModelError(OpenLLMError):
    """No catalog entry can serve a routed request."""

    code = "NO_MATCH"


class EngineConnectionError(OpenLLMError):
    """The engine could not be reached."""

    code = "CONNECTION_ERROR"


# Structured ``kind`` values understood from the engine's error payload
_KIND_MAP: dict[str, type[UpstreamError]] = {
    "model_not_found": ModelNotFoundError,
    "model_not_loaded": ModelNotLoadedError,
}


def classify_upstream_error(status_code: int, body: str) -> OpenLLMError:
    """Build the most specific error for a non-2xx engine reply.

    A structured JSON payload ``{"kind": ..., "model_id": ..., "message": ...}``
    (optionally nested under ``"error"``) is preferred. Otherwise the legacy
    free-text body is searched for a ``Model '<id>'`` reference: 404 means
    not found, 412 means not loaded. Anything else is a generic
    UpstreamError.
    """
    structured = _parse_structured(body)
    if structured is not None:
        kind = str(structured.get("kind", "")).lower()
        message = str(structured.get("message") or body)
        model_id = structured.get("model_id")
        if kind == "inference_error":
            return InferenceError(message, status_code=status_code, model_id=model_id)
        error_cls = _KIND_MAP.get(kind, UpstreamError)
        return error_cls(message, status_code=status_code, model_id=model_id)

    match = _MODEL_REF_RE.search(body)
    model_id = match.group(1) if match else None
    if match and status_code == 404:
        return ModelNotFoundError(body, status_code=status_code, model_id=model_id)
    if match and status_code == 412:
        return ModelNotLoadedError(body, status_code=status_code, model_id=model_id)
    return UpstreamError(
        body or f"Engine returned HTTP {status_code}",
        status_code=status_code,
        model_id=model_id,
    )


def _parse_structured(body: str) -> dict | None:
    """Return the structured error object from a JSON body, if there is one."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None
    nested = data.get("error")
    if isinstance(nested, dict):
        data = nested
    if "kind" not in data:
        return None
    return data
