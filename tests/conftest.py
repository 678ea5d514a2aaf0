"""Shared test fixtures for pytest.

ENVIRONMENT is pinned to ``test`` before anything imports settings so no
``.env`` file is read, and provider keys, endpoints and timeouts exported in
the shell do not leak into the tests.
"""

import os
from collections.abc import Callable, Generator

import httpx
import pytest
from fastapi.testclient import TestClient


os.environ["ENVIRONMENT"] = "test"
for _name in (
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "GEMINI_API_KEY",
    "ANTHROPIC_BASE_URL",
    "OPENAI_BASE_URL",
    "GEMINI_BASE_URL",
    "UPSTREAM_CONNECT_TIMEOUT_SECONDS",
):
    os.environ.pop(_name, None)

from core.config import Settings, get_settings  # noqa: E402
from dependencies.generation import get_gateway, get_model_catalog  # noqa: E402
from main import app  # noqa: E402
from services.generation.catalog import ModelCatalog  # noqa: E402
from services.generation.gateway import GenerationGateway  # noqa: E402


Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    """Settings with deterministic upstream URLs and no fallback keys."""
    return Settings(
        _env_file="",  # type: ignore[call-arg]
        ENVIRONMENT="test",
        ANTHROPIC_API_KEY=None,
        OPENAI_API_KEY=None,
        GEMINI_API_KEY=None,
        ANTHROPIC_BASE_URL="https://anthropic.test",
        OPENAI_BASE_URL="https://openai.test",
        GEMINI_BASE_URL="https://gemini.test",
    )


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """
    Create a test client for the FastAPI application.
    """
    with TestClient(app) as client:
        yield client


@pytest.fixture
def mock_upstream(settings: Settings) -> Generator[Callable[[Handler], None], None, None]:
    """Route the app's gateway and catalog through an ``httpx.MockTransport``.

    Call the returned function with a request handler; upstream requests made
    by the app during the test are answered by it.
    """

    def install(handler: Handler) -> None:
        def make_client() -> httpx.AsyncClient:
            return httpx.AsyncClient(transport=httpx.MockTransport(handler))

        app.dependency_overrides[get_gateway] = lambda: GenerationGateway(
            settings, client=make_client()
        )
        app.dependency_overrides[get_model_catalog] = lambda: ModelCatalog(
            settings, client=make_client()
        )

    yield install
    app.dependency_overrides.pop(get_gateway, None)
    app.dependency_overrides.pop(get_model_catalog, None)
