"""Deadline-bounded HTTP transport to the inference engine.

EngineTransport owns one httpx.AsyncClient bound to the engine's base URL
and opens exactly one connection per call. Every call is bounded by a
Deadline measured from issuance. A Deadline is also the cancellation
handle: cancelling it fires the same asyncio timeout early, so a caller
cancel and an expiry both unblock a pending read on the next loop tick.

Nothing here retries. A failed attempt is reported once and retry policy
is left to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from openllm_client.errors import (
    DeadlineExceededError,
    EngineConnectionError,
    OpenLLMError,
    StreamCancelledError,
    classify_upstream_error,
)

logger = logging.getLogger(__name__)

_JSON_HEADERS = {"Content-Type": "application/json"}
_STREAM_HEADERS = {"Accept": "text/event-stream"}


class Deadline:
    """A cancellable time bound for one engine call.

    Use as an async context manager around the awaited I/O. On exit, an
    expiry raises DeadlineExceededError and a cancel() raises
    StreamCancelledError. ``timeout=None`` never expires but can still
    be cancelled.
    """

    def __init__(self, timeout: float | None) -> None:
        self._timeout = timeout
        self._cm: asyncio.Timeout | None = None
        self._active = False
        self._cancel_requested = False

    @property
    def timeout(self) -> float | None:
        return self._timeout

    @property
    def cancelled(self) -> bool:
        """Whether cancel() has been called."""
        return self._cancel_requested

    @property
    def expired(self) -> bool:
        """Whether the bound fired (by expiry or cancel)."""
        return self._cm is not None and self._cm.expired()

    def cancel(self) -> None:
        """Abort the bounded operation.

        Safe to call before entry (the operation then fails immediately),
        during it, or after it finished (no effect).
        """
        if self._cancel_requested:
            return
        self._cancel_requested = True
        if self._active and self._cm is not None and not self._cm.expired():
            self._cm.reschedule(asyncio.get_running_loop().time())

    async def __aenter__(self) -> Deadline:
        if self._cancel_requested:
            raise StreamCancelledError("Call cancelled before it started")
        self._cm = asyncio.timeout(self._timeout)
        await self._cm.__aenter__()
        self._active = True
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self._active = False
        if self._cm is None:
            return False
        try:
            await self._cm.__aexit__(exc_type, exc, tb)
        except TimeoutError as err:
            if self._cancel_requested:
                raise StreamCancelledError("Call cancelled by caller") from err
            raise DeadlineExceededError(
                f"Request timeout after {self._timeout}s"
            ) from err
        return False


class EngineTransport:
    """HTTP access to the engine with a per-call deadline.

    Pass ``transport`` (e.g. an httpx.MockTransport) to swap the network
    layer, or ``client`` to supply a preconfigured httpx.AsyncClient.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        *,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers=_JSON_HEADERS,
        )

    # ── Settings ─────────────────────────────────────────────────

    @property
    def base_url(self) -> str:
        return str(self._client.base_url).rstrip("/")

    @base_url.setter
    def base_url(self, value: str) -> None:
        self._client.base_url = value

    @property
    def timeout(self) -> float:
        """Default deadline in seconds for calls made through this transport."""
        return self._timeout

    @timeout.setter
    def timeout(self, value: float) -> None:
        if value <= 0:
            raise ValueError("timeout must be positive")
        self._timeout = value
        self._client.timeout = httpx.Timeout(value)

    def deadline(self, timeout: float | None = None) -> Deadline:
        """A fresh Deadline using ``timeout`` or the transport default."""
        return Deadline(timeout if timeout is not None else self._timeout)

    # ── Calls ────────────────────────────────────────────────────

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        deadline: Deadline | None = None,
    ) -> httpx.Response:
        """Issue one request/response call and return the 2xx response.

        Raises:
            DeadlineExceededError: If the deadline elapsed.
            StreamCancelledError: If the deadline was cancelled.
            EngineConnectionError: If the engine could not be reached.
            OpenLLMError: A classified error for any non-2xx status.
        """
        bound = deadline or self.deadline()
        logger.debug("%s %s (deadline=%ss)", method, path, bound.timeout)
        try:
            async with bound:
                response = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            raise DeadlineExceededError(
                f"Request timeout after {bound.timeout}s"
            ) from exc
        except httpx.RequestError as exc:
            raise EngineConnectionError(
                f"Cannot reach engine at {self.base_url}: {exc}"
            ) from exc

        if not response.is_success:
            raise classify_upstream_error(response.status_code, response.text)
        return response

    @asynccontextmanager
    async def open_stream(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[httpx.Response]:
        """Open one long-lived streaming request.

        Yields the response as soon as headers arrive; the body is read
        through ``response.aiter_bytes()``. The connection is closed when
        the block exits. The caller wraps this in a Deadline; ``timeout``
        should match it so httpx does not give up on a slow read first.
        """
        merged = {**_STREAM_HEADERS, **(headers or {})}
        limit = timeout if timeout is not None else self._timeout
        logger.debug("%s %s (streaming)", method, path)
        try:
            async with self._client.stream(
                method, path, json=json, headers=merged, timeout=httpx.Timeout(limit),
            ) as response:
                yield response
        except httpx.TimeoutException as exc:
            raise DeadlineExceededError(f"Stream timeout after {limit}s") from exc
        except httpx.RequestError as exc:
            raise EngineConnectionError(
                f"Cannot reach engine at {self.base_url}: {exc}"
            ) from exc

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()


async def raise_for_engine_status(response: httpx.Response) -> None:
    """Read a non-2xx streaming response fully and raise its classified error."""
    if response.is_success:
        return
    body = (await response.aread()).decode("utf-8", errors="replace")
    error: OpenLLMError = classify_upstream_error(response.status_code, body)
    raise error
