"""Client side of the generate endpoint.

``StreamAccumulator`` rebuilds the full text from the gateway's outbound
event stream; ``accumulate_response`` picks the streaming or JSON path from
the response content type; ``GenerationClient`` wires both to an HTTP call.
Nothing here retries. ``GenerationResult.appears_complete`` lets the caller
decide whether to ask for a continuation.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import httpx

from schemas.generation import (
    ChapterNode,
    GenerationMetadata,
    GenerationRequest,
    TaskKind,
    count_words,
)
from services.generation.exceptions import RemoteGenerationError
from services.generation.repair import parse_outline
from services.generation.sse import SseLineBuffer, iter_data_payloads


logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/v1/generate"
COMPLETE_ENDINGS = frozenset(".!?`\"')]}:")

ProgressCallback = Callable[[str], None]


def appears_complete(text: str) -> bool:
    """Heuristic: does ``text`` end like a finished piece of writing?"""
    stripped = text.rstrip()
    return bool(stripped) and stripped[-1] in COMPLETE_ENDINGS


@dataclass(frozen=True, slots=True)
class GenerationResult:
    content: str
    metadata: GenerationMetadata = field(default_factory=GenerationMetadata)
    completed: bool = False
    appears_complete: bool = False

    @classmethod
    def from_text(
        cls, content: str, metadata: GenerationMetadata | None = None, completed: bool = True
    ) -> GenerationResult:
        return cls(
            content=content,
            metadata=metadata or GenerationMetadata(word_count=count_words(content)),
            completed=completed,
            appears_complete=appears_complete(content),
        )


class StreamAccumulator:
    """Accumulates ``{chunk}`` frames until ``{done}`` or ``{error}``.

    The ``done`` frame's ``content`` is authoritative when non-empty; the
    joined chunks are used otherwise. An ``error`` frame discards everything
    received so far and raises ``RemoteGenerationError``.
    """

    def __init__(self, on_progress: ProgressCallback | None = None) -> None:
        self._lines = SseLineBuffer()
        self._parts: list[str] = []
        self._final_content: str | None = None
        self._metadata: GenerationMetadata | None = None
        self._on_progress = on_progress
        self.completed = False

    @property
    def text(self) -> str:
        if self._final_content:
            return self._final_content
        return "".join(self._parts)

    def feed(self, data: bytes) -> list[str]:
        """Consume one read; return the chunk texts it completed."""
        return self._handle_lines(self._lines.feed(data))

    def finish(self) -> GenerationResult:
        self._handle_lines(self._lines.flush())
        content = self.text
        if not self.completed:
            logger.warning("Generation stream closed without a done frame")
        return GenerationResult.from_text(content, self._metadata, completed=self.completed)

    def _handle_lines(self, lines: list[str]) -> list[str]:
        chunks: list[str] = []
        for payload in iter_data_payloads(lines):
            chunk = self._handle_payload(payload)
            if chunk:
                chunks.append(chunk)
        return chunks

    def _handle_payload(self, payload: dict[str, Any]) -> str | None:
        if "error" in payload:
            self._parts.clear()
            self._final_content = None
            raise RemoteGenerationError(str(payload["error"]))

        if payload.get("done"):
            self.completed = True
            content = payload.get("content")
            if isinstance(content, str) and content:
                self._final_content = content
            if isinstance(payload.get("metadata"), dict):
                self._metadata = GenerationMetadata.model_validate(payload["metadata"])
            return None

        chunk = payload.get("chunk")
        if not isinstance(chunk, str) or not chunk:
            return None
        self._parts.append(chunk)
        if self._on_progress is not None:
            self._on_progress("".join(self._parts))
        return chunk


async def accumulate_response(
    response: httpx.Response, on_progress: ProgressCallback | None = None
) -> GenerationResult:
    """Read a generate response to completion, whichever format it uses.

    Raises:
        RemoteGenerationError: the gateway reported an error, or answered
            with a body that is neither an event stream nor ``{content}``.
    """
    content_type = response.headers.get("content-type", "")
    if "text/event-stream" in content_type:
        accumulator = StreamAccumulator(on_progress)
        async for data in response.aiter_bytes():
            accumulator.feed(data)
        return accumulator.finish()

    await response.aread()
    try:
        data = response.json()
    except ValueError as exc:
        raise RemoteGenerationError(
            f"Unexpected response (HTTP {response.status_code}): {response.text[:200]}"
        ) from exc

    if response.is_error or not isinstance(data, dict) or "error" in data:
        message = data.get("error") if isinstance(data, dict) else None
        raise RemoteGenerationError(
            str(message or f"Generation failed with HTTP {response.status_code}")
        )

    content = data.get("content")
    if not isinstance(content, str):
        raise RemoteGenerationError("Response did not contain generated content")
    if on_progress is not None:
        on_progress(content)
    return GenerationResult.from_text(content)


class GenerationClient:
    """Async HTTP client for the generate endpoint.

    Args:
        base_url: Gateway origin, e.g. ``http://localhost:8000``.
        client: Optional shared ``httpx.AsyncClient``; its own ``base_url``
            is ignored in favour of ``base_url`` here.
        connect_timeout: Connect timeout for clients created internally.
            Reads are unbounded because chapters stream for minutes.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        connect_timeout: float = 10.0,
    ) -> None:
        self.url = f"{base_url.rstrip('/')}{GENERATE_PATH}"
        self._client = client
        self._connect_timeout = connect_timeout

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        timeout = httpx.Timeout(None, connect=self._connect_timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            yield client

    async def generate(
        self, request: GenerationRequest, on_progress: ProgressCallback | None = None
    ) -> GenerationResult:
        payload = request.model_dump(by_alias=True, exclude_none=True)
        async with self._client_scope() as client:
            async with client.stream("POST", self.url, json=payload) as response:
                return await accumulate_response(response, on_progress)

    async def generate_outline(
        self, request: GenerationRequest, on_progress: ProgressCallback | None = None
    ) -> list[ChapterNode]:
        """Generate a table of contents and parse it, repairing truncation.

        Raises:
            TruncatedPayload: the outline could not be recovered.
        """
        outline_request = request.model_copy(update={"type": TaskKind.OUTLINE.value})
        result = await self.generate(outline_request, on_progress)
        return parse_outline(result.content)
