"""Single entry point that turns a generation request into canonical events.

The gateway validates the request, resolves the credential, builds the
instruction and budget, and relays the provider adapter's events. It holds no
per-request state; everything a call needs travels in a ``GenerationCall``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import aclosing, asynccontextmanager

import httpx

from core.config import Settings, get_settings
from core.error_handler import get_correlation_id, structured_logger
from schemas.generation import (
    CanonicalEvent,
    DoneEvent,
    ErrorEvent,
    GenerationRequest,
    Provider,
    TaskKind,
)
from services.generation.adapters import ADAPTERS, GenerationCall, ProtocolAdapter
from services.generation.exceptions import (
    BadRequest,
    GenerationError,
    UpstreamOpaqueError,
)
from services.generation.policy import budget_for
from services.generation.prompts import build_system_prompt


CredentialLookup = Callable[[str], str | None]


class GenerationGateway:
    """Route generation requests to provider adapters.

    Args:
        settings: Application settings; defaults to ``get_settings()``.
        credential_lookup: Returns the fallback key for a provider wire name
            when the request carries none. Defaults to the keys in settings.
        client: Shared HTTP client. When omitted a client is opened per call
            and closed once its stream ends.
        adapters: Provider registry, overridable for tests.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        credential_lookup: CredentialLookup | None = None,
        client: httpx.AsyncClient | None = None,
        adapters: Mapping[Provider, type[ProtocolAdapter]] = ADAPTERS,
    ) -> None:
        self.settings = settings or get_settings()
        self._credential_lookup = credential_lookup or self.settings.fallback_api_key
        self._client = client
        self._adapters = adapters

    def adapter_for(self, provider: Provider) -> ProtocolAdapter:
        base_url = self.settings.provider_base_url(provider.value)
        return self._adapters[provider](base_url)

    def is_streaming(self, provider: Provider | str) -> bool:
        """Whether ``provider`` answers with an event stream."""
        return self.adapter_for(_parse_provider(str(provider))).streams

    def resolve_api_key(self, provider: str, api_key: str | None) -> str | None:
        if api_key:
            return api_key
        if not provider:
            return None
        return self._credential_lookup(provider) or None

    def prepare(self, request: GenerationRequest) -> GenerationCall:
        """Validate ``request`` and build the call for its adapter.

        Raises:
            BadRequest: a required field is missing, or the provider or task
                kind is unknown. No network call has been made at that point.
        """
        provider_name = (request.provider or "").strip()
        api_key = self.resolve_api_key(provider_name, request.api_key)
        model = (request.model or "").strip()
        prompt = request.prompt or ""

        missing = [
            name
            for name, value in (
                ("provider", provider_name),
                ("apiKey", api_key),
                ("model", model),
                ("prompt", prompt.strip()),
            )
            if not value
        ]
        if missing:
            key_state = "provided" if api_key else "missing"
            raise BadRequest(
                f"Missing required fields: {', '.join(missing)}. "
                f"API key {key_state} for {provider_name or 'unknown provider'}"
            )

        provider = _parse_provider(provider_name)
        try:
            task = TaskKind(request.type)
        except ValueError as exc:
            raise BadRequest(f"Unsupported generation type: {request.type}") from exc

        budget = budget_for(provider, task)
        return GenerationCall(
            provider=provider,
            api_key=api_key,
            model=model,
            system_prompt=build_system_prompt(task, request.context),
            prompt=prompt,
            task=task,
            max_tokens=budget.max_tokens,
            temperature=budget.temperature,
            correlation_id=get_correlation_id(),
        )

    async def generate(self, request: GenerationRequest) -> AsyncIterator[CanonicalEvent]:
        """Yield canonical events for ``request``, ending in one Done or Error."""
        try:
            call = self.prepare(request)
        except BadRequest as exc:
            structured_logger.warning(
                "Rejected generation request",
                provider=request.provider,
                error_code=exc.error_code,
                reason=exc.message,
            )
            yield ErrorEvent(message=exc.message, error_code=exc.error_code)
            return

        async with aclosing(self.run(call)) as events:
            async for event in events:
                yield event

    async def run(self, call: GenerationCall) -> AsyncIterator[CanonicalEvent]:
        """Relay events for an already prepared call."""
        adapter = self.adapter_for(call.provider)
        structured_logger.info(
            "Generation started",
            provider=call.provider.value,
            model=call.model,
            task=call.task.value,
            max_tokens=call.max_tokens,
            temperature=call.temperature,
            streaming=adapter.streams,
        )

        try:
            async with self._client_scope() as client:
                async with aclosing(adapter.events(client, call)) as events:
                    async for event in events:
                        self._log_terminal(call, event)
                        yield event
        except GenerationError as exc:
            yield self._error_event(call, exc)
        except httpx.HTTPError as exc:
            detail = str(exc) or type(exc).__name__
            opaque = UpstreamOpaqueError(f"Could not reach {call.provider.value}: {detail}")
            yield self._error_event(call, opaque)

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        # Only connecting is bounded; long generations may stream for minutes.
        timeout = httpx.Timeout(
            None, connect=self.settings.UPSTREAM_CONNECT_TIMEOUT_SECONDS
        )
        async with httpx.AsyncClient(timeout=timeout) as client:
            yield client

    def _log_terminal(self, call: GenerationCall, event: CanonicalEvent) -> None:
        if isinstance(event, DoneEvent):
            structured_logger.info(
                "Generation completed",
                provider=call.provider.value,
                model=call.model,
                task=call.task.value,
                stop_reason=event.metadata.stop_reason,
                word_count=event.metadata.word_count,
                input_tokens=event.metadata.input_tokens,
                output_tokens=event.metadata.output_tokens,
            )
        elif isinstance(event, ErrorEvent):
            structured_logger.warning(
                "Generation ended with upstream error",
                provider=call.provider.value,
                model=call.model,
                error_code=event.error_code,
                reason=event.message,
            )

    def _error_event(self, call: GenerationCall, exc: GenerationError) -> ErrorEvent:
        structured_logger.warning(
            "Generation failed",
            provider=call.provider.value,
            model=call.model,
            error_code=exc.error_code,
            reason=exc.message,
        )
        return ErrorEvent(message=exc.message, error_code=exc.error_code)


def _parse_provider(name: str) -> Provider:
    try:
        return Provider(name)
    except ValueError as exc:
        raise BadRequest(f"Unsupported provider: {name}") from exc
