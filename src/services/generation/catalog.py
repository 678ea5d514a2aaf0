"""Model catalog: which models a credential can use, per provider."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any

import httpx

from core.config import Settings, get_settings
from schemas.generation import ModelInfo, Provider
from services.generation.adapters import (
    ANTHROPIC_VERSION,
    GEMINI_KEY_HEADER,
    error_from_response,
)
from services.generation.exceptions import BadRequest, UpstreamProtocolError


logger = logging.getLogger(__name__)


def format_claude_model_name(model_id: str) -> str:
    """``claude-3-5-sonnet-20241022`` -> ``Claude 3.5 Sonnet``."""
    words: list[str] = []
    for token in re.sub(r"-\d{8}$", "", model_id).split("-"):
        # Adjacent version digits form one number: 3-5 -> 3.5
        if token.isdigit() and words and words[-1][-1:].isdigit():
            words[-1] = f"{words[-1]}.{token}"
        else:
            words.append(token[:1].upper() + token[1:])
    return " ".join(words)


def claude_family_rank(model_id: str) -> float:
    if "opus-4" in model_id or "sonnet-4" in model_id:
        return 4
    if "3-5" in model_id or "3.5" in model_id:
        return 3.5
    if "claude-3" in model_id:
        return 3
    return 0


def format_openai_model_name(model_id: str) -> str:
    """``gpt-4o-mini`` -> ``GPT 4o Mini``."""
    name = re.sub(r"gpt", "GPT", model_id.replace("-", " "), flags=re.IGNORECASE)
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), name)


class ModelCatalog:
    """Lists models from the provider's own models endpoint."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        credential_lookup: Callable[[str], str | None] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._credential_lookup = credential_lookup or self.settings.fallback_api_key
        self._client = client

    async def list_models(self, provider: str | None, api_key: str | None) -> list[ModelInfo]:
        """Return the models available to ``api_key`` (or the fallback key).

        Raises:
            BadRequest: provider or credential missing, or provider unknown.
            UpstreamAuthError: the provider rejected the credential.
            UpstreamProtocolError / UpstreamOpaqueError: any other failure.
        """
        name = (provider or "").strip()
        key = api_key or (self._credential_lookup(name) if name else None)
        if not name or not key:
            raise BadRequest("Provider and API key are required")
        try:
            parsed = Provider(name)
        except ValueError as exc:
            raise BadRequest("Invalid provider") from exc

        base_url = self.settings.provider_base_url(parsed.value).rstrip("/")
        if parsed is Provider.CLAUDE:
            body = await self._get(
                "Claude",
                f"{base_url}/v1/models",
                headers={"x-api-key": key, "anthropic-version": ANTHROPIC_VERSION},
            )
            models = self._claude_models(body)
        elif parsed is Provider.OPENAI:
            body = await self._get(
                "OpenAI",
                f"{base_url}/v1/models",
                headers={"Authorization": f"Bearer {key}"},
            )
            models = self._openai_models(body)
        else:
            body = await self._get(
                "Gemini", f"{base_url}/v1beta/models", headers={GEMINI_KEY_HEADER: key}
            )
            models = self._gemini_models(body)

        logger.info("Listed %d %s models", len(models), parsed.value)
        return models

    async def _get(
        self,
        label: str,
        url: str,
        headers: dict[str, str],
    ) -> Any:
        if self._client is not None:
            response = await self._client.get(url, headers=headers)
        else:
            timeout = httpx.Timeout(30.0, connect=self.settings.UPSTREAM_CONNECT_TIMEOUT_SECONDS)
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(url, headers=headers)

        if response.is_error:
            raise error_from_response(label, response.status_code, response.content)
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamProtocolError(f"{label} returned an invalid model list") from exc

    @staticmethod
    def _entries(body: Any, key: str) -> list[dict[str, Any]]:
        entries = body.get(key) if isinstance(body, dict) else None
        if not isinstance(entries, list):
            raise UpstreamProtocolError("Model list response is missing its entries")
        return [entry for entry in entries if isinstance(entry, dict)]

    def _claude_models(self, body: Any) -> list[ModelInfo]:
        models = [
            ModelInfo(
                id=entry["id"],
                name=entry.get("display_name") or format_claude_model_name(entry["id"]),
                provider=Provider.CLAUDE,
            )
            for entry in self._entries(body, "data")
            if entry.get("type") == "model" and "claude" in str(entry.get("id", ""))
        ]
        return sorted(models, key=lambda m: (-claude_family_rank(m.id), m.id))

    def _openai_models(self, body: Any) -> list[ModelInfo]:
        models = [
            ModelInfo(
                id=entry["id"],
                name=format_openai_model_name(entry["id"]),
                provider=Provider.OPENAI,
            )
            for entry in self._entries(body, "data")
            if "gpt-4" in str(entry.get("id", "")) or "gpt-3.5" in str(entry.get("id", ""))
        ]
        return sorted(models, key=lambda m: ("gpt-4" not in m.id, m.id))

    def _gemini_models(self, body: Any) -> list[ModelInfo]:
        models = []
        for entry in self._entries(body, "models"):
            model_id = str(entry.get("name", "")).replace("models/", "", 1)
            if not model_id:
                continue
            models.append(
                ModelInfo(
                    id=model_id,
                    name=entry.get("displayName") or model_id,
                    provider=Provider.GEMINI,
                )
            )
        return models
