"""Streaming inference: frame decoding and the per-call stream controller."""

from openllm_client.streaming.controller import (
    TERMINAL_STATES,
    StreamState,
    TokenStreamController,
)
from openllm_client.streaming.decoder import FrameDecoder

__all__ = [
    "FrameDecoder",
    "StreamState",
    "TERMINAL_STATES",
    "TokenStreamController",
]
