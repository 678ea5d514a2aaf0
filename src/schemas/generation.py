"""Schemas for the generation gateway: requests, canonical events, outlines.

Wire shapes are camelCase (the wizard frontend's convention); Python
attributes are snake_case. Every outbound event knows how to render itself
as an event-stream frame so the route never hand-builds payloads.
"""

from __future__ import annotations

import json
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


STREAM_ENDED_STOP_REASON = "stream_ended"


class Provider(StrEnum):
    """Upstream LLM backends, by wire name."""

    CLAUDE = "claude"
    OPENAI = "openai"
    GEMINI = "gemini"


class TaskKind(StrEnum):
    """What the caller wants generated; selects prompt template and budget."""

    OUTLINE = "toc"
    CHAPTER = "chapter"
    CONTENT = "content"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerationContext(_CamelModel):
    """Optional book/chapter context used to fill the instruction template."""

    book_title: str | None = None
    book_description: str | None = None
    chapter_title: str | None = None
    previous_content: str | None = None
    system_prompt_override: str | None = None
    target_word_count: int | None = Field(default=None, ge=1)


class GenerationRequest(_CamelModel):
    """Inbound generate request.

    Required fields are optional here on purpose: the gateway reports every
    missing one as a single 400 instead of a framework-level 422.
    """

    provider: str | None = None
    api_key: str | None = Field(default=None, repr=False)
    model: str | None = None
    prompt: str | None = None
    type: str = TaskKind.CONTENT.value
    context: GenerationContext | None = None


class GenerationMetadata(_CamelModel):
    stop_reason: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    word_count: int = 0


def count_words(text: str) -> int:
    """Number of whitespace-separated tokens in ``text``."""
    return len(text.split())


# -----------------------------------------------------------------------------
# Canonical events
# -----------------------------------------------------------------------------


class _CanonicalEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    def to_payload(self) -> dict[str, Any]:  # pragma: no cover - overridden
        raise NotImplementedError

    def to_sse(self) -> str:
        """Serialize as one event-stream frame."""
        return f"data: {json.dumps(self.to_payload())}\n\n"


class ChunkEvent(_CanonicalEvent):
    kind: Literal["chunk"] = "chunk"
    text: str

    def to_payload(self) -> dict[str, Any]:
        return {"chunk": self.text}


class DoneEvent(_CanonicalEvent):
    kind: Literal["done"] = "done"
    content: str
    metadata: GenerationMetadata

    def to_payload(self) -> dict[str, Any]:
        return {
            "done": True,
            "content": self.content,
            "metadata": self.metadata.model_dump(by_alias=True),
        }


class ErrorEvent(_CanonicalEvent):
    kind: Literal["error"] = "error"
    message: str
    error_code: str = "generation_failed"

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message}


CanonicalEvent = ChunkEvent | DoneEvent | ErrorEvent


# -----------------------------------------------------------------------------
# Structured outputs
# -----------------------------------------------------------------------------


class ChapterNode(BaseModel):
    """One entry of a generated table of contents."""

    id: str
    title: str
    slug: str
    children: list[ChapterNode] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class ModelInfo(BaseModel):
    id: str
    name: str
    provider: Provider


class ModelListRequest(_CamelModel):
    provider: str | None = None
    api_key: str | None = Field(default=None, repr=False)


class ModelListResponse(BaseModel):
    models: list[ModelInfo]
