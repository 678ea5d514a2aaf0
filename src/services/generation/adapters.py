"""Provider protocol adapters.

Providers differ in one capability that matters to the rest of the gateway:
whether they stream. ``StreamingAdapter`` keeps a long-lived upstream
connection open and hands decoding to an event-stream normalizer;
``BatchAdapter`` issues one blocking request and emits the whole text as a
single chunk followed by ``Done``. Callers see the same canonical events
either way.

Adding a provider means subclassing one of the two bases and registering the
class in ``ADAPTERS``.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, ClassVar

import httpx

from schemas.generation import (
    CanonicalEvent,
    ChunkEvent,
    DoneEvent,
    GenerationMetadata,
    Provider,
    TaskKind,
    count_words,
)
from services.generation.exceptions import (
    GenerationError,
    StreamDisconnected,
    UpstreamAuthError,
    UpstreamOpaqueError,
    UpstreamProtocolError,
)
from services.generation.policy import clamp_max_tokens
from services.generation.sse import AnthropicStreamNormalizer


logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_OUTPUT_BETA = "output-128k-2025-02-19"
ERROR_EXCERPT_CHARS = 200
# Sent as a header rather than the `key` query parameter so it never
# appears in request URLs.
GEMINI_KEY_HEADER = "x-goog-api-key"


@dataclass(frozen=True, slots=True)
class GenerationCall:
    """Everything an adapter needs for one upstream call."""

    provider: Provider
    api_key: str = field(repr=False)
    model: str
    system_prompt: str
    prompt: str
    task: TaskKind
    max_tokens: int
    temperature: float
    correlation_id: str | None = None


@dataclass(frozen=True, slots=True)
class UpstreamRequest:
    url: str
    json: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict, repr=False)


def _error_message(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str) and error:
        return error
    if isinstance(payload.get("message"), str):
        return payload["message"]
    return None


def error_from_response(label: str, status_code: int, body: bytes) -> GenerationError:
    """Map a non-2xx upstream response onto the domain taxonomy.

    401 and 403 are always credential failures. Any other status becomes a
    protocol error when the body carries a structured ``error.message``, or an
    opaque error quoting the start of the raw body when it does not.
    """
    text = body.decode("utf-8", errors="replace")
    try:
        message = _error_message(json.loads(text))
    except ValueError:
        message = None

    if status_code in (401, 403):
        return UpstreamAuthError(message or f"{label} rejected the API key")
    if message is None:
        excerpt = text[:ERROR_EXCERPT_CHARS]
        return UpstreamOpaqueError(f"{label} API failed: {status_code} - {excerpt}")
    return UpstreamProtocolError(message, status_code=status_code)


class ProtocolAdapter(ABC):
    """Shared surface of both adapter variants."""

    provider: ClassVar[Provider]
    label: ClassVar[str]
    streams: ClassVar[bool]

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    @abstractmethod
    def build_request(self, call: GenerationCall) -> UpstreamRequest:
        """Translate a call into the provider's wire request."""

    @abstractmethod
    def events(
        self, client: httpx.AsyncClient, call: GenerationCall
    ) -> AsyncIterator[CanonicalEvent]:
        """Run the upstream call and yield canonical events."""

    def max_tokens(self, call: GenerationCall) -> int:
        return clamp_max_tokens(self.provider, call.max_tokens)


class StreamingAdapter(ProtocolAdapter):
    streams: ClassVar[bool] = True

    @abstractmethod
    def new_normalizer(self) -> AnthropicStreamNormalizer:
        """Fresh normalizer for one upstream stream."""

    async def events(
        self, client: httpx.AsyncClient, call: GenerationCall
    ) -> AsyncIterator[CanonicalEvent]:
        request = self.build_request(call)
        normalizer = self.new_normalizer()

        async with client.stream(
            "POST",
            request.url,
            json=request.json,
            headers=request.headers,
        ) as response:
            if response.is_error:
                body = await response.aread()
                raise error_from_response(self.label, response.status_code, body)

            try:
                async with aclosing(self._relay(response, normalizer)) as relay:
                    async for event in relay:
                        yield event
            except StreamDisconnected as exc:
                logger.warning(
                    "%s stream dropped after %d characters: %s",
                    self.label,
                    len(normalizer.full_text),
                    exc.message,
                )

        for event in normalizer.finish():
            yield event

    async def _relay(
        self, response: httpx.Response, normalizer: AnthropicStreamNormalizer
    ) -> AsyncIterator[CanonicalEvent]:
        try:
            async for data in response.aiter_bytes():
                for event in normalizer.feed(data):
                    yield event
                if normalizer.terminated:
                    return
        except httpx.TransportError as exc:
            raise StreamDisconnected(str(exc) or type(exc).__name__) from exc


class BatchAdapter(ProtocolAdapter):
    streams: ClassVar[bool] = False

    @abstractmethod
    def parse_body(self, body: Any) -> tuple[str, GenerationMetadata]:
        """Extract the generated text and metadata from a success body."""

    async def events(
        self, client: httpx.AsyncClient, call: GenerationCall
    ) -> AsyncIterator[CanonicalEvent]:
        request = self.build_request(call)
        response = await client.post(
            request.url,
            json=request.json,
            headers=request.headers,
        )
        if response.is_error:
            raise error_from_response(self.label, response.status_code, response.content)

        try:
            body = response.json()
        except ValueError as exc:
            excerpt = response.text[:ERROR_EXCERPT_CHARS]
            raise UpstreamOpaqueError(
                f"{self.label} returned a non-JSON body: {excerpt}"
            ) from exc

        text, metadata = self.parse_body(body)
        yield ChunkEvent(text=text)
        yield DoneEvent(content=text, metadata=metadata)

    def _missing_text(self) -> UpstreamProtocolError:
        return UpstreamProtocolError(
            f"{self.label} response did not contain generated text"
        )


class AnthropicAdapter(StreamingAdapter):
    provider = Provider.CLAUDE
    label = "Claude"

    def build_request(self, call: GenerationCall) -> UpstreamRequest:
        return UpstreamRequest(
            url=f"{self.base_url}/v1/messages",
            headers={
                "x-api-key": call.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "anthropic-beta": ANTHROPIC_OUTPUT_BETA,
            },
            json={
                "model": call.model,
                "max_tokens": self.max_tokens(call),
                "temperature": call.temperature,
                "stream": True,
                "system": call.system_prompt,
                "messages": [{"role": "user", "content": call.prompt}],
            },
        )

    def new_normalizer(self) -> AnthropicStreamNormalizer:
        return AnthropicStreamNormalizer()


class OpenAIAdapter(BatchAdapter):
    provider = Provider.OPENAI
    label = "OpenAI"

    def build_request(self, call: GenerationCall) -> UpstreamRequest:
        return UpstreamRequest(
            url=f"{self.base_url}/v1/chat/completions",
            headers={"Authorization": f"Bearer {call.api_key}"},
            json={
                "model": call.model,
                "messages": [
                    {"role": "system", "content": call.system_prompt},
                    {"role": "user", "content": call.prompt},
                ],
                "max_tokens": self.max_tokens(call),
                "temperature": call.temperature,
            },
        )

    def parse_body(self, body: Any) -> tuple[str, GenerationMetadata]:
        try:
            choice = body["choices"][0]
            text = choice["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise self._missing_text() from exc
        if not isinstance(text, str):
            raise self._missing_text()

        usage = body.get("usage") or {}
        return text, GenerationMetadata(
            stop_reason=choice.get("finish_reason") or "",
            input_tokens=usage.get("prompt_tokens") or 0,
            output_tokens=usage.get("completion_tokens") or 0,
            word_count=count_words(text),
        )


class GeminiAdapter(BatchAdapter):
    provider = Provider.GEMINI
    label = "Gemini"

    def build_request(self, call: GenerationCall) -> UpstreamRequest:
        # The v1 endpoint has no separate system slot; the instruction leads
        # the single user turn.
        return UpstreamRequest(
            url=f"{self.base_url}/v1/models/{call.model}:generateContent",
            headers={GEMINI_KEY_HEADER: call.api_key},
            json={
                "contents": [
                    {"parts": [{"text": f"{call.system_prompt}\n\n{call.prompt}"}]}
                ],
                "generationConfig": {
                    "maxOutputTokens": self.max_tokens(call),
                    "temperature": call.temperature,
                },
            },
        )

    def parse_body(self, body: Any) -> tuple[str, GenerationMetadata]:
        try:
            candidate = body["candidates"][0]
            parts = candidate["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise self._missing_text() from exc

        texts = [
            part["text"]
            for part in parts
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        ]
        if not texts:
            raise self._missing_text()
        text = "".join(texts)

        usage = body.get("usageMetadata") or {}
        return text, GenerationMetadata(
            stop_reason=candidate.get("finishReason") or "",
            input_tokens=usage.get("promptTokenCount") or 0,
            output_tokens=usage.get("candidatesTokenCount") or 0,
            word_count=count_words(text),
        )


ADAPTERS: dict[Provider, type[ProtocolAdapter]] = {
    Provider.CLAUDE: AnthropicAdapter,
    Provider.OPENAI: OpenAIAdapter,
    Provider.GEMINI: GeminiAdapter,
}
