"""Tests for the Token Stream Controller.

Covers: normal completion, callback ordering and counts, unexpected
termination, upstream error classification, timeouts while connecting
and mid-stream, caller cancellation, async callbacks, and the
raise-without-on_error path.
All network traffic goes through httpx.MockTransport.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator

import httpx
import pytest

from openllm_client.errors import (
    DeadlineExceededError,
    ModelNotFoundError,
    ModelNotLoadedError,
    OpenLLMError,
    StreamCancelledError,
    UnexpectedTerminationError,
)
from openllm_client.schemas.inference import (
    InferenceRequest,
    InferenceResponse,
    StreamToken,
)
from openllm_client.streaming.controller import (
    STREAM_PATH,
    StreamState,
    TokenStreamController,
)
from openllm_client.transport import EngineTransport

# ── Factories ──────────────────────────────────────────────────────


def _frame(token: str, token_id: int, complete: bool = False) -> bytes:
    payload = json.dumps({"token": token, "token_id": token_id, "complete": complete})
    return f"event: token\ndata: {payload}\n\n".encode()


def _make_request(**overrides) -> InferenceRequest:
    defaults = {"model_id": "mistral", "prompt": "Say hi"}
    defaults.update(overrides)
    return InferenceRequest(**defaults)


def _make_transport(handler, timeout: float = 5.0) -> EngineTransport:
    return EngineTransport(
        "http://engine.test", timeout, transport=httpx.MockTransport(handler),
    )


def _static_stream(body: bytes):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == STREAM_PATH
        return httpx.Response(200, content=body)
    return handler


def _chunked_stream(*chunks: bytes, then_sleep: float = 0.0):
    async def body() -> AsyncIterator[bytes]:
        for chunk in chunks:
            yield chunk
            await asyncio.sleep(0)
        if then_sleep:
            await asyncio.sleep(then_sleep)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body())
    return handler


class _Recorder:
    """Collects every callback invocation."""

    def __init__(self) -> None:
        self.tokens: list[StreamToken] = []
        self.completed: list[InferenceResponse] = []
        self.errors: list[OpenLLMError] = []

    def on_token(self, token: StreamToken) -> None:
        self.tokens.append(token)

    def on_complete(self, response: InferenceResponse) -> None:
        self.completed.append(response)

    def on_error(self, error: OpenLLMError) -> None:
        self.errors.append(error)


def _make_controller(
    transport: EngineTransport,
    recorder: _Recorder,
    *,
    timeout: float | None = None,
    request: InferenceRequest | None = None,
) -> TokenStreamController:
    return TokenStreamController(
        transport,
        request or _make_request(),
        on_token=recorder.on_token,
        on_complete=recorder.on_complete,
        on_error=recorder.on_error,
        timeout=timeout,
    )


# ══════════════════════════════════════════════════════════════════
# Normal completion
# ══════════════════════════════════════════════════════════════════


class TestCompletion:
    @pytest.mark.asyncio()
    async def test_two_tokens_complete_with_aggregate(self):
        body = (
            b'data: {"token": "Hi", "token_id": 0, "complete": false}\n'
            b'data: {"token": "!", "token_id": 1, "complete": true}\n'
        )
        recorder = _Recorder()
        controller = _make_controller(_make_transport(_static_stream(body)), recorder)

        result = await controller.run()

        assert [t.token for t in recorder.tokens] == ["Hi", "!"]
        assert len(recorder.completed) == 1
        assert recorder.completed[0].text == "Hi!"
        assert recorder.completed[0].tokens_generated == 2
        assert recorder.completed[0].model_id == "mistral"
        assert recorder.errors == []
        assert result == recorder.completed[0]
        assert controller.state == StreamState.COMPLETED
        assert controller.done is True

    @pytest.mark.asyncio()
    async def test_token_count_matches_callback_invocations(self):
        chunks = [_frame(str(i), i) for i in range(9)] + [_frame(".", 9, True)]
        recorder = _Recorder()
        controller = _make_controller(_make_transport(_chunked_stream(*chunks)), recorder)

        result = await controller.run()

        assert result is not None
        assert result.tokens_generated == len(recorder.tokens) == 10
        assert controller.token_count == 10

    @pytest.mark.asyncio()
    async def test_nothing_decoded_after_completion_token(self):
        body = _frame("a", 0) + _frame("b", 1, True) + _frame("late", 2)
        recorder = _Recorder()
        controller = _make_controller(_make_transport(_static_stream(body)), recorder)

        result = await controller.run()

        assert [t.token for t in recorder.tokens] == ["a", "b"]
        assert result is not None and result.text == "ab"

    @pytest.mark.asyncio()
    async def test_malformed_frame_skipped_stream_still_completes(self):
        body = _frame("a", 0) + b"data: {oops\n" + _frame("b", 1, True)
        recorder = _Recorder()
        controller = _make_controller(_make_transport(_static_stream(body)), recorder)

        result = await controller.run()

        assert result is not None and result.text == "ab"
        assert controller.malformed_frames == 1

    @pytest.mark.asyncio()
    async def test_completion_token_without_newline_is_unexpected_termination(self):
        body = _frame("a", 0) + b'data: {"token": "b", "token_id": 1, "complete": true}'
        recorder = _Recorder()
        controller = _make_controller(_make_transport(_static_stream(body)), recorder)

        result = await controller.run()

        assert result is None
        assert [t.token for t in recorder.tokens] == ["a"]
        assert recorder.completed == []
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], UnexpectedTerminationError)
        assert controller.state == StreamState.FAILED
        assert controller.malformed_frames == 1

    @pytest.mark.asyncio()
    async def test_request_payload_sent(self):
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            assert request.headers["accept"] == "text/event-stream"
            return httpx.Response(200, content=_frame("x", 0, True))

        recorder = _Recorder()
        controller = _make_controller(
            _make_transport(handler), recorder,
            request=_make_request(max_tokens=16),
        )
        await controller.run()

        assert seen == [{"model_id": "mistral", "prompt": "Say hi", "max_tokens": 16}]

    @pytest.mark.asyncio()
    async def test_async_callbacks_are_awaited(self):
        received: list[str] = []
        finished: list[str] = []

        async def on_token(token: StreamToken) -> None:
            await asyncio.sleep(0)
            received.append(token.token)

        async def on_complete(response: InferenceResponse) -> None:
            finished.append(response.text)

        controller = TokenStreamController(
            _make_transport(_static_stream(_frame("a", 0) + _frame("b", 1, True))),
            _make_request(),
            on_token=on_token,
            on_complete=on_complete,
        )
        await controller.run()

        assert received == ["a", "b"]
        assert finished == ["ab"]


# ══════════════════════════════════════════════════════════════════
# Failures
# ══════════════════════════════════════════════════════════════════


class TestFailures:
    @pytest.mark.asyncio()
    async def test_close_without_completion_is_unexpected_termination(self):
        recorder = _Recorder()
        controller = _make_controller(
            _make_transport(_static_stream(_frame("Hi", 0))), recorder,
        )

        result = await controller.run()

        assert result is None
        assert len(recorder.tokens) == 1
        assert recorder.completed == []
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], UnexpectedTerminationError)
        assert recorder.errors[0].model_id == "mistral"
        assert controller.state == StreamState.FAILED

    @pytest.mark.asyncio()
    async def test_404_is_model_not_found(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, text="Model 'ghost' not found. Please register it first.")

        recorder = _Recorder()
        controller = _make_controller(
            _make_transport(handler), recorder, request=_make_request(model_id="ghost"),
        )
        await controller.run()

        assert len(recorder.errors) == 1
        error = recorder.errors[0]
        assert isinstance(error, ModelNotFoundError)
        assert error.model_id == "ghost"
        assert error.status_code == 404
        assert recorder.tokens == []
        assert controller.state == StreamState.FAILED

    @pytest.mark.asyncio()
    async def test_412_is_model_not_loaded(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(412, text="Model 'mistral' is not loaded")

        recorder = _Recorder()
        controller = _make_controller(_make_transport(handler), recorder)
        await controller.run()

        assert isinstance(recorder.errors[0], ModelNotLoadedError)

    @pytest.mark.asyncio()
    async def test_raises_when_no_error_callback(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, text="Model 'mistral' not found")

        controller = TokenStreamController(
            _make_transport(handler), _make_request(), on_token=lambda t: None,
        )
        with pytest.raises(ModelNotFoundError):
            await controller.run()
        assert controller.state == StreamState.FAILED
        assert isinstance(controller.error, ModelNotFoundError)

    @pytest.mark.asyncio()
    async def test_token_callback_exception_propagates(self):
        def on_token(token: StreamToken) -> None:
            raise RuntimeError("caller bug")

        errors: list[OpenLLMError] = []
        controller = TokenStreamController(
            _make_transport(_static_stream(_frame("a", 0, True))),
            _make_request(),
            on_token=on_token,
            on_error=errors.append,
        )
        with pytest.raises(RuntimeError, match="caller bug"):
            await controller.run()
        assert controller.state == StreamState.FAILED
        assert errors == []

    @pytest.mark.asyncio()
    async def test_run_twice_is_rejected(self):
        recorder = _Recorder()
        controller = _make_controller(
            _make_transport(_static_stream(_frame("a", 0, True))), recorder,
        )
        await controller.run()
        with pytest.raises(RuntimeError):
            await controller.run()
        assert len(recorder.completed) == 1


# ══════════════════════════════════════════════════════════════════
# Deadline and cancellation
# ══════════════════════════════════════════════════════════════════


class TestDeadlineAndCancel:
    @pytest.mark.asyncio()
    async def test_timeout_mid_stream_keeps_delivered_tokens(self):
        handler = _chunked_stream(_frame("a", 0), _frame("b", 1), then_sleep=5.0)
        recorder = _Recorder()
        controller = _make_controller(_make_transport(handler), recorder, timeout=0.2)

        result = await controller.run()

        assert result is None
        assert [t.token for t in recorder.tokens] == ["a", "b"]
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], DeadlineExceededError)
        assert recorder.completed == []
        assert controller.state == StreamState.TIMED_OUT
        assert controller.text == "ab"

    @pytest.mark.asyncio()
    async def test_cancel_from_token_callback(self):
        handler = _chunked_stream(_frame("a", 0), then_sleep=5.0)
        recorder = _Recorder()
        controller = _make_controller(_make_transport(handler), recorder, timeout=10.0)

        def on_token(token: StreamToken) -> None:
            recorder.on_token(token)
            controller.cancel()

        controller._on_token = on_token
        await asyncio.wait_for(controller.run(), timeout=2.0)

        assert len(recorder.tokens) == 1
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], StreamCancelledError)
        assert recorder.completed == []
        assert controller.state == StreamState.CANCELLED

    @pytest.mark.asyncio()
    async def test_cancel_stops_delivery_within_one_chunk(self):
        body = _frame("a", 0) + _frame("b", 1) + _frame("c", 2, True)
        recorder = _Recorder()
        controller = _make_controller(_make_transport(_static_stream(body)), recorder)

        def on_token(token: StreamToken) -> None:
            recorder.on_token(token)
            controller.cancel()

        controller._on_token = on_token
        result = await controller.run()

        assert result is None
        assert [t.token for t in recorder.tokens] == ["a"]
        assert recorder.completed == []
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], StreamCancelledError)
        assert controller.state == StreamState.CANCELLED
        assert controller.text == "a"

    @pytest.mark.asyncio()
    async def test_cancel_on_completion_token_wins(self):
        recorder = _Recorder()
        controller = _make_controller(
            _make_transport(_static_stream(_frame("a", 0, True))), recorder,
        )

        def on_token(token: StreamToken) -> None:
            recorder.on_token(token)
            controller.cancel()

        controller._on_token = on_token
        result = await controller.run()

        assert result is None
        assert recorder.completed == []
        assert isinstance(recorder.errors[0], StreamCancelledError)
        assert controller.state == StreamState.CANCELLED

    @pytest.mark.asyncio()
    async def test_timeout_while_connecting(self):
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5.0)
            return httpx.Response(200, content=_frame("a", 0, True))

        recorder = _Recorder()
        controller = _make_controller(_make_transport(handler), recorder, timeout=0.1)

        result = await asyncio.wait_for(controller.run(), timeout=2.0)

        assert result is None
        assert recorder.tokens == []
        assert recorder.completed == []
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], DeadlineExceededError)
        assert controller.state == StreamState.TIMED_OUT

    @pytest.mark.asyncio()
    async def test_cancel_from_another_task(self):
        handler = _chunked_stream(_frame("a", 0), then_sleep=5.0)
        recorder = _Recorder()
        controller = _make_controller(_make_transport(handler), recorder, timeout=10.0)

        task = asyncio.create_task(controller.run())
        while not recorder.tokens:
            await asyncio.sleep(0.01)
        controller.cancel()
        await asyncio.wait_for(task, timeout=2.0)

        assert isinstance(recorder.errors[0], StreamCancelledError)
        assert controller.state == StreamState.CANCELLED

    @pytest.mark.asyncio()
    async def test_cancel_before_run(self):
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, content=_frame("a", 0, True))

        recorder = _Recorder()
        controller = _make_controller(_make_transport(handler), recorder)
        controller.cancel()
        await controller.run()

        assert calls == []
        assert isinstance(recorder.errors[0], StreamCancelledError)
        assert controller.state == StreamState.CANCELLED

    @pytest.mark.asyncio()
    async def test_cancel_after_completion_is_noop(self):
        recorder = _Recorder()
        controller = _make_controller(
            _make_transport(_static_stream(_frame("a", 0, True))), recorder,
        )
        await controller.run()
        controller.cancel()

        assert controller.state == StreamState.COMPLETED
        assert recorder.errors == []

    @pytest.mark.asyncio()
    async def test_task_cancellation_reports_and_reraises(self):
        handler = _chunked_stream(_frame("a", 0), then_sleep=5.0)
        recorder = _Recorder()
        controller = _make_controller(_make_transport(handler), recorder, timeout=10.0)

        task = asyncio.create_task(controller.run())
        while not recorder.tokens:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert controller.state == StreamState.CANCELLED
        assert isinstance(recorder.errors[0], StreamCancelledError)
