"""Token Stream Controller: lifecycle of one streaming inference call.

Each call gets its own controller, which owns its connection, decoder
buffer and accumulated text. Nothing is shared between concurrent streams.

State machine::

    idle -> connecting -> streaming -> completed
                 |            |------> failed | timed_out | cancelled
                 |------------------->  failed | timed_out | cancelled

Terminal states are absorbing. Per run, exactly one of on_complete or
on_error fires; tokens already handed to on_token stay delivered whatever
the outcome.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from openllm_client.errors import (
    DeadlineExceededError,
    OpenLLMError,
    StreamCancelledError,
    UnexpectedTerminationError,
)
from openllm_client.schemas.inference import (
    InferenceRequest,
    InferenceResponse,
    StreamToken,
)
from openllm_client.streaming.decoder import FrameDecoder
from openllm_client.transport import EngineTransport, raise_for_engine_status

logger = logging.getLogger(__name__)

STREAM_PATH = "/v1/inference/stream"

# Callbacks may be plain functions or coroutine functions
TokenCallback = Callable[[StreamToken], Any]
CompleteCallback = Callable[[InferenceResponse], Any]
ErrorCallback = Callable[[OpenLLMError], Any]


class StreamState(StrEnum):
    """Lifecycle states of a TokenStreamController."""

    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({
    StreamState.COMPLETED,
    StreamState.FAILED,
    StreamState.TIMED_OUT,
    StreamState.CANCELLED,
})


async def _invoke(callback: Callable[[Any], Any], value: Any) -> None:
    result = callback(value)
    if asyncio.iscoroutine(result):
        await result


class TokenStreamController:
    """Runs one streaming inference call and reports it through callbacks.

    Args:
        transport: Engine transport used to open the stream.
        request: The inference request to stream.
        on_token: Called with each decoded StreamToken, in arrival order.
            Calls never overlap; an async callback is awaited before the
            next frame is decoded.
        on_complete: Called once with the aggregate InferenceResponse.
        on_error: Called once with the classified OpenLLMError. When
            omitted, run() raises the error instead.
        timeout: Deadline in seconds from issuance; defaults to the
            transport's timeout.
    """

    def __init__(
        self,
        transport: EngineTransport,
        request: InferenceRequest,
        *,
        on_token: TokenCallback,
        on_complete: CompleteCallback | None = None,
        on_error: ErrorCallback | None = None,
        timeout: float | None = None,
    ) -> None:
        self._transport = transport
        self._request = request
        self._on_token = on_token
        self._on_complete = on_complete
        self._on_error = on_error
        self._deadline = transport.deadline(timeout)
        self._decoder = FrameDecoder()
        self._state = StreamState.IDLE
        self._fragments: list[str] = []
        self._token_count = 0
        self._result: InferenceResponse | None = None
        self._error: OpenLLMError | None = None

    # ── Observable state ─────────────────────────────────────────

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def done(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def text(self) -> str:
        """Text accumulated from the tokens delivered so far."""
        return "".join(self._fragments)

    @property
    def token_count(self) -> int:
        return self._token_count

    @property
    def malformed_frames(self) -> int:
        return self._decoder.malformed_frames

    @property
    def result(self) -> InferenceResponse | None:
        return self._result

    @property
    def error(self) -> OpenLLMError | None:
        return self._error

    # ── Control ──────────────────────────────────────────────────

    def cancel(self) -> None:
        """Abort the stream; the error callback receives StreamCancelledError."""
        if self.done:
            return
        logger.debug("Cancel requested for stream to %s", self._request.model_id)
        self._deadline.cancel()

    async def run(self) -> InferenceResponse | None:
        """Stream the request to a terminal state.

        Returns:
            The aggregate InferenceResponse on completion, or None when the
            stream failed and on_error handled it.

        Raises:
            OpenLLMError: The classified failure, when no on_error was given.
            RuntimeError: If the controller has already been run.
        """
        if self._state is not StreamState.IDLE:
            raise RuntimeError("A TokenStreamController can only be run once")

        try:
            async with self._deadline:
                self._transition(StreamState.CONNECTING)
                await self._consume()
                self._raise_if_cancelled()
        except DeadlineExceededError as exc:
            return await self._fail(StreamState.TIMED_OUT, exc)
        except StreamCancelledError as exc:
            return await self._fail(StreamState.CANCELLED, exc)
        except OpenLLMError as exc:
            return await self._fail(StreamState.FAILED, exc)
        except asyncio.CancelledError:
            await self._fail(
                StreamState.CANCELLED,
                StreamCancelledError(
                    "Stream task was cancelled", model_id=self._request.model_id,
                ),
                reraise=False,
            )
            raise
        except Exception:
            # A caller callback raised; the stream is dead but the bug is theirs
            self._transition(StreamState.FAILED)
            raise

        return await self._complete()

    # ── Internals ────────────────────────────────────────────────

    async def _consume(self) -> None:
        async with self._transport.open_stream(
            "POST", STREAM_PATH,
            json=self._request.to_payload(),
            timeout=self._deadline.timeout,
        ) as response:
            await raise_for_engine_status(response)
            self._transition(StreamState.STREAMING)

            async for chunk in response.aiter_bytes():
                for token in self._decoder.feed(chunk):
                    if await self._deliver(token):
                        return
            self._decoder.flush()

        raise UnexpectedTerminationError(
            f"Stream for model '{self._request.model_id}' closed after "
            f"{self._token_count} token(s) without a completion token",
            model_id=self._request.model_id,
        )

    async def _deliver(self, token: StreamToken) -> bool:
        """Record one token and hand it to the caller. True if it is the last."""
        self._raise_if_cancelled()
        self._fragments.append(token.token)
        self._token_count += 1
        await _invoke(self._on_token, token)
        return token.complete

    def _raise_if_cancelled(self) -> None:
        # cancel() may land while tokens from one chunk are still being delivered
        if self._deadline.cancelled:
            raise StreamCancelledError(
                "Call cancelled by caller", model_id=self._request.model_id,
            )

    async def _complete(self) -> InferenceResponse:
        self._result = InferenceResponse(
            model_id=self._request.model_id,
            text=self.text,
            tokens_generated=self._token_count,
            finish_reason="stop",
        )
        if self._decoder.malformed_frames:
            logger.info(
                "Stream for %s completed with %d malformed frame(s) skipped",
                self._request.model_id, self._decoder.malformed_frames,
            )
        try:
            if self._on_complete is not None:
                await _invoke(self._on_complete, self._result)
        finally:
            self._transition(StreamState.COMPLETED)
        return self._result

    async def _fail(
        self,
        state: StreamState,
        error: OpenLLMError,
        *,
        reraise: bool = True,
    ) -> None:
        if error.model_id is None:
            error.model_id = self._request.model_id
        self._error = error
        logger.warning(
            "Stream for %s ended %s after %d token(s): %s",
            self._request.model_id, state.value, self._token_count, error.message,
        )
        try:
            if self._on_error is not None:
                await _invoke(self._on_error, error)
            elif reraise:
                raise error
        finally:
            self._transition(state)
        return None

    def _transition(self, state: StreamState) -> None:
        logger.debug(
            "Stream %s: %s -> %s", self._request.model_id, self._state.value, state.value,
        )
        self._state = state
