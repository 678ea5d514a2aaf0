"""Event-stream decoding for the streaming provider.

Two layers:

* ``SseLineBuffer`` turns arbitrarily split byte reads into complete text
  lines. Multi-byte UTF-8 characters and lines may both straddle reads; the
  partial tail is carried over to the next ``feed``.
* ``AnthropicStreamNormalizer`` maps Anthropic Messages stream events onto the
  gateway's canonical ``Chunk`` / ``Done`` / ``Error`` events.

The output depends only on the concatenated bytes, never on how they were
split into reads.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import Iterator
from typing import Any

from schemas.generation import (
    STREAM_ENDED_STOP_REASON,
    CanonicalEvent,
    ChunkEvent,
    DoneEvent,
    ErrorEvent,
    GenerationMetadata,
    count_words,
)


logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
EMPTY_STREAM_MESSAGE = "Stream ended before any content was received"


class SseLineBuffer:
    """Carry-over line buffer with incremental UTF-8 decoding."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, data: bytes) -> list[str]:
        """Append ``data`` and return every line it completed."""
        self._pending += self._decoder.decode(data)
        *complete, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in complete]

    def flush(self) -> list[str]:
        """Return the trailing partial line, if any, at end of stream."""
        self._pending += self._decoder.decode(b"", final=True)
        tail, self._pending = self._pending.rstrip("\r"), ""
        return [tail] if tail else []


def iter_data_payloads(lines: list[str]) -> Iterator[dict[str, Any]]:
    """Yield the JSON object of every ``data:`` line.

    Comment, ``event:`` and blank lines are skipped, as are ``[DONE]``
    sentinels. A payload that fails to decode is logged and dropped.
    """
    for line in lines:
        if not line.startswith(DATA_PREFIX):
            continue
        raw = line[len(DATA_PREFIX):].strip()
        if not raw or raw == DONE_SENTINEL:
            continue
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Skipping undecodable stream line: %.120s", raw)
            continue
        if isinstance(payload, dict):
            yield payload


class AnthropicStreamNormalizer:
    """Stateful translator from Anthropic stream events to canonical events.

    One instance per upstream call. After a terminal event (``Done`` or
    ``Error``) further input is ignored.
    """

    def __init__(self) -> None:
        self._lines = SseLineBuffer()
        self._parts: list[str] = []
        self._stop_reason = ""
        self._input_tokens = 0
        self._output_tokens = 0
        self._chunks_emitted = 0
        self.terminated = False

    @property
    def full_text(self) -> str:
        return "".join(self._parts)

    def feed(self, data: bytes) -> list[CanonicalEvent]:
        if self.terminated:
            return []
        return self._handle_lines(self._lines.feed(data))

    def finish(self) -> list[CanonicalEvent]:
        """Drain the buffer at end of stream and guarantee a terminal event."""
        if self.terminated:
            return []
        events = self._handle_lines(self._lines.flush())
        if self.terminated:
            return events

        self.terminated = True
        if self._chunks_emitted:
            logger.info(
                "Upstream stream ended without message_stop after %d chunks",
                self._chunks_emitted,
            )
            events.append(self._done(STREAM_ENDED_STOP_REASON))
        else:
            events.append(
                ErrorEvent(message=EMPTY_STREAM_MESSAGE, error_code="upstream_protocol")
            )
        return events

    def _handle_lines(self, lines: list[str]) -> list[CanonicalEvent]:
        events: list[CanonicalEvent] = []
        for payload in iter_data_payloads(lines):
            event = self._handle_event(payload)
            if event is not None:
                events.append(event)
            if self.terminated:
                break
        return events

    def _handle_event(self, payload: dict[str, Any]) -> CanonicalEvent | None:
        event_type = payload.get("type")

        if event_type == "message_start":
            message = payload.get("message") or {}
            self._apply_usage(message.get("usage"))
        elif event_type == "content_block_delta":
            text = (payload.get("delta") or {}).get("text")
            if isinstance(text, str) and text:
                self._parts.append(text)
                self._chunks_emitted += 1
                return ChunkEvent(text=text)
        elif event_type == "message_delta":
            stop_reason = (payload.get("delta") or {}).get("stop_reason")
            if stop_reason:
                self._stop_reason = str(stop_reason)
            self._apply_usage(payload.get("usage"))
        elif event_type == "message_stop":
            self.terminated = True
            return self._done(self._stop_reason)
        elif event_type == "error":
            self.terminated = True
            error = payload.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else None
            return ErrorEvent(
                message=message or "Stream error", error_code="upstream_protocol"
            )
        return None

    def _apply_usage(self, usage: Any) -> None:
        if not isinstance(usage, dict):
            return
        if isinstance(usage.get("input_tokens"), int):
            self._input_tokens = usage["input_tokens"]
        if isinstance(usage.get("output_tokens"), int):
            self._output_tokens = usage["output_tokens"]

    def _done(self, stop_reason: str) -> DoneEvent:
        content = self.full_text
        return DoneEvent(
            content=content,
            metadata=GenerationMetadata(
                stop_reason=stop_reason,
                input_tokens=self._input_tokens,
                output_tokens=self._output_tokens,
                word_count=count_words(content),
            ),
        )
