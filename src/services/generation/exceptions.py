"""Domain exceptions for the generation gateway.

Every failure a generation can end in maps to exactly one of these. Each
carries a stable ``error_code`` that the gateway copies onto the terminal
``ErrorEvent`` and the HTTP layer maps to a status code. Nothing in this
package retries; retry policy belongs to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class GenerationError(Exception):
    """Base class for generation domain errors."""

    message: str
    error_code: str

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.error_code}: {self.message}"


class BadRequest(GenerationError):
    """A required field is missing or invalid; raised before any network call."""

    def __init__(self, message: str = "Missing required fields") -> None:
        super().__init__(message=message, error_code="bad_request")


class UpstreamAuthError(GenerationError):
    """The provider rejected the credential."""

    def __init__(self, message: str = "Invalid API key") -> None:
        super().__init__(message=message, error_code="upstream_auth")


class UpstreamProtocolError(GenerationError):
    """Non-2xx response with a parseable provider error body, or a success
    body that lacks the expected fields."""

    def __init__(
        self, message: str = "Upstream request failed", status_code: int | None = None
    ) -> None:
        super().__init__(message=message, error_code="upstream_protocol")
        self.status_code = status_code


class UpstreamOpaqueError(GenerationError):
    def __init__(self, message: str = "Upstream request failed") -> None:
        super().__init__(message=message, error_code="upstream_opaque")


class StreamDisconnected(GenerationError):
    """The upstream connection dropped mid-stream.

    Recovered by the normalizer as a ``stream_ended`` completion; it is never
    surfaced to the caller as an error.
    """

    def __init__(self, message: str = "Upstream stream disconnected") -> None:
        super().__init__(message=message, error_code="stream_disconnected")


TRUNCATED_PAYLOAD_GUIDANCE = (
    "The AI response was truncated or invalid. This usually happens with very "
    "large outlines. Try simplifying your outline or using fewer chapters."
)


class TruncatedPayload(GenerationError):
    """Structured output could not be parsed, even after repair."""

    def __init__(self, message: str = TRUNCATED_PAYLOAD_GUIDANCE) -> None:
        super().__init__(message=message, error_code="truncated_payload")


class RemoteGenerationError(GenerationError):
    """The gateway reported an error to a downstream consumer."""

    def __init__(self, message: str = "Generation failed") -> None:
        super().__init__(message=message, error_code="generation_failed")


_HTTP_STATUS_BY_CODE: dict[str, int] = {
    "bad_request": 400,
    "upstream_auth": 401,
    "upstream_protocol": 502,
    "upstream_opaque": 502,
    "truncated_payload": 422,
}


def http_status_for(error: GenerationError) -> int:
    """HTTP status used when a generation error ends a JSON response."""
    return http_status_for_code(error.error_code)


def http_status_for_code(error_code: str) -> int:
    return _HTTP_STATUS_BY_CODE.get(error_code, 500)
