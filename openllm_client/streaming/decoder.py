"""Incremental decoder for the engine's token event stream.

The streaming endpoint sends newline-separated records:

    event: token
    data: {"token": "Hi", "token_id": 0, "complete": false}

Chunks from the network can split a record (or a multi-byte character)
anywhere, so the decoder keeps the unterminated tail of each chunk and
prefixes it onto the next one. Only complete lines are parsed, which
makes the output independent of how the bytes were chunked.
"""

from __future__ import annotations

import codecs
import logging

from pydantic import ValidationError

from openllm_client.errors import MalformedFrameError
from openllm_client.schemas.inference import StreamToken

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
EVENT_PREFIX = "event:"


class FrameDecoder:
    """Turns raw stream bytes into StreamTokens.

    Malformed records are logged and skipped rather than raised, so one
    bad frame cannot abort an otherwise healthy generation. A record whose
    token_id does not increase over the previous token is treated the
    same way.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._last_token_id: int | None = None
        self._malformed: list[MalformedFrameError] = []

    @property
    def malformed_frames(self) -> int:
        """Number of records skipped so far."""
        return len(self._malformed)

    @property
    def errors(self) -> list[MalformedFrameError]:
        """The skipped records, in the order they were seen."""
        return list(self._malformed)

    @property
    def pending(self) -> str:
        """Unterminated text waiting for its newline."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[StreamToken]:
        """Consume one chunk and return the tokens it completes."""
        self._buffer += self._utf8.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._parse_lines(lines)

    def flush(self) -> None:
        """Drop whatever is left once the byte source has closed.

        A record only counts once its newline has arrived, so a non-empty
        tail is recorded as a malformed frame and never parsed.
        """
        self._buffer += self._utf8.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        if tail.strip():
            self._skip(tail.strip(), "unterminated record at end of stream")

    def _parse_lines(self, lines: list[str]) -> list[StreamToken]:
        tokens: list[StreamToken] = []
        for line in lines:
            token = self._parse_line(line)
            if token is not None:
                tokens.append(token)
        return tokens

    def _parse_line(self, line: str) -> StreamToken | None:
        record = line.strip()
        if record.startswith(EVENT_PREFIX):
            return None
        # Blank separators and SSE comments carry no token either
        if not record.startswith(DATA_PREFIX):
            return None

        payload = record[len(DATA_PREFIX):].strip()
        if not payload:
            return None

        try:
            token = StreamToken.model_validate_json(payload)
        except ValidationError as exc:
            self._skip(payload, f"invalid token payload: {exc.error_count()} error(s)")
            return None

        if self._last_token_id is not None and token.token_id <= self._last_token_id:
            self._skip(
                payload,
                f"token_id {token.token_id} does not follow {self._last_token_id}",
            )
            return None

        self._last_token_id = token.token_id
        return token

    def _skip(self, payload: str, reason: str) -> None:
        error = MalformedFrameError(f"Skipping malformed frame ({reason}): {payload[:200]}")
        self._malformed.append(error)
        logger.warning("%s", error.message)
