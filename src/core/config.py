"""Application settings: CORS, upstream providers and fallback credentials."""

import json
import os
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env"), env_file_encoding="utf-8")

    # App
    APP_NAME: str = "Bookwright Gateway"
    ENVIRONMENT: str = "development"  # development | production | test

    # CORS
    # Accept list or CSV/JSON string from env; normalized to list[str] by validators
    CORS_ORIGINS: list[str] | str = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    ALLOW_CREDENTIALS: bool = False

    # Fallback credentials used when a request does not carry its own key.
    # Prefer storing these in .env.dev/.env.prod rather than the environment.
    ANTHROPIC_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None
    GEMINI_API_KEY: str | None = None

    # Upstream endpoints (overridable for proxies and local fakes)
    ANTHROPIC_BASE_URL: str = "https://api.anthropic.com"
    OPENAI_BASE_URL: str = "https://api.openai.com"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com"

    # Only the connect phase is bounded; generations legitimately run for
    # tens of seconds and callers own the total wait budget.
    UPSTREAM_CONNECT_TIMEOUT_SECONDS: float = 10.0

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: object) -> list[str]:
        """Allow list, CSV string, or JSON array string for CORS origins."""
        if isinstance(v, list):
            return [str(i).strip() for i in v]
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                try:
                    parsed = json.loads(s)
                except json.JSONDecodeError as e:
                    raise ValueError(
                        "CORS_ORIGINS must be a CSV list or JSON array string"
                    ) from e
                if not isinstance(parsed, list):
                    raise ValueError("CORS_ORIGINS JSON must be a list")
                return [str(i).strip() for i in parsed]
            return [i.strip() for i in s.split(",") if i.strip()]
        raise ValueError("Invalid CORS_ORIGINS type; expected str or list[str]")

    @model_validator(mode="after")
    def _validate_cors_credentials(self) -> "Settings":
        """Ensure wildcard origins are not used when credentials are allowed."""
        if isinstance(self.CORS_ORIGINS, str):
            self.CORS_ORIGINS = self.assemble_cors_origins(self.CORS_ORIGINS)
        if self.ALLOW_CREDENTIALS and any(
            o.strip() == "*" for o in (self.CORS_ORIGINS or [])
        ):
            raise ValueError(
                "CORS configuration error: ALLOW_CREDENTIALS=True but "
                "CORS_ORIGINS contains '*'. Use explicit origins when credentials "
                "are allowed."
            )
        return self

    @field_validator("UPSTREAM_CONNECT_TIMEOUT_SECONDS")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("UPSTREAM_CONNECT_TIMEOUT_SECONDS must be positive")
        return v

    def fallback_api_key(self, provider: str) -> str | None:
        """Return the configured credential for a provider wire name, if any."""
        keys = {
            "claude": self.ANTHROPIC_API_KEY,
            "openai": self.OPENAI_API_KEY,
            "gemini": self.GEMINI_API_KEY,
        }
        return keys.get(provider) or None

    def provider_base_url(self, provider: str) -> str:
        urls = {
            "claude": self.ANTHROPIC_BASE_URL,
            "openai": self.OPENAI_BASE_URL,
            "gemini": self.GEMINI_BASE_URL,
        }
        return urls[provider]


@lru_cache
def get_settings() -> Settings:
    env = os.getenv("ENVIRONMENT", "development").lower()
    if env not in {"development", "production", "test"}:
        raise ValueError("ENVIRONMENT must be 'development', 'production', or 'test'")

    if env == "production":
        env_file = ".env.prod"
    elif env == "development":
        env_file = ".env.dev"
    else:
        # test environment - no env file needed, use defaults
        env_file = ""
    if env_file and not os.path.exists(env_file):
        env_file = ""

    # pydantic-settings accepts the runtime-only `_env_file` kwarg; mypy's stub
    # does not know about it.
    return Settings(_env_file=env_file)  # type: ignore[call-arg]
