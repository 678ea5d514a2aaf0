"""Focused unit tests for global exception handling behaviors.

These tests exercise the public contract via FastAPI test app using the installed
exception handler and ExceptionNormalizationMiddleware.
"""

from __future__ import annotations

from unittest.mock import patch

from fastapi import FastAPI, HTTPException, status
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field

from core.error_handler import (
    ExceptionNormalizationMiddleware,
    global_exception_handler,
)
from core.middleware import CorrelationIdMiddleware
from services.generation.exceptions import (
    GenerationError,
    TruncatedPayload,
    UpstreamAuthError,
    UpstreamOpaqueError,
)


class Item(BaseModel):
    name: str = Field(min_length=3)
    qty: int = Field(ge=1)


def build_test_app(env: str) -> TestClient:
    app = FastAPI()
    app.add_middleware(ExceptionNormalizationMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_exception_handler(Exception, global_exception_handler)
    app.add_exception_handler(HTTPException, global_exception_handler)
    app.add_exception_handler(RequestValidationError, global_exception_handler)
    app.add_exception_handler(GenerationError, global_exception_handler)

    @app.post("/items")
    async def create_item(item: Item):  # pragma: no cover - executed via client
        return {"ok": True, "item": item.model_dump()}

    @app.get("/upstream-auth")
    async def upstream_auth():
        raise UpstreamAuthError("Incorrect API key provided")

    @app.get("/upstream-opaque")
    async def upstream_opaque():
        raise UpstreamOpaqueError("OpenAI API failed: 503 - upstream connect error")

    @app.get("/truncated")
    async def truncated():
        raise TruncatedPayload()

    @app.get("/boom")
    async def boom():
        raise RuntimeError("Exploded with secret=should_not_leak")

    @app.get("/unauthorized")
    async def unauthorized():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    client = TestClient(app)

    # Patch environment setting per test invocation
    patcher = patch("core.error_handler.get_settings")
    mocked = patcher.start()
    mocked.return_value.ENVIRONMENT = env

    # Ensure patcher stops at client finalizer
    def fin():
        patcher.stop()

    client._finalizer = fin  # type: ignore[attr-defined]
    return client


def test_validation_error_production():
    client = build_test_app("production")
    resp = client.post("/items", json={"name": "ab", "qty": 0})
    assert resp.status_code == 422
    data = resp.json()
    assert data["error"]["type"] == "validation_error"
    # production should not include validation_errors
    assert "validation_errors" not in data["error"]


def test_validation_error_development():
    client = build_test_app("development")
    resp = client.post("/items", json={"name": "ab", "qty": 0})
    assert resp.status_code == 422
    data = resp.json()
    assert "validation_errors" in data["error"]


def test_upstream_auth_maps_to_401():
    client = build_test_app("production")
    resp = client.get("/upstream-auth")
    assert resp.status_code == 401
    body = resp.json()
    assert body["success"] is False
    assert body["message"] == "Incorrect API key provided"
    assert body["error"]["type"] == "upstream_auth"
    assert body["error"]["correlation_id"]


def test_upstream_opaque_maps_to_502():
    client = build_test_app("development")
    resp = client.get("/upstream-opaque")
    assert resp.status_code == 502
    assert resp.json()["error"]["type"] == "upstream_opaque"


def test_truncated_payload_maps_to_422():
    client = build_test_app("production")
    resp = client.get("/truncated")
    assert resp.status_code == 422
    body = resp.json()
    assert body["error"]["type"] == "truncated_payload"
    assert "truncated" in body["message"]


def test_generic_exception_production():
    client = build_test_app("production")
    resp = client.get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["type"] == "internal_server_error"
    assert "traceback" not in body["error"]
    assert "secret=should_not_leak" not in str(body)


def test_generic_exception_development():
    client = build_test_app("development")
    resp = client.get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["type"] == "internal_server_error"
    assert "traceback" in body["error"]


def test_http_exception_production():
    client = build_test_app("production")
    resp = client.get("/unauthorized")
    assert resp.status_code == 401
    body = resp.json()
    assert body["error"]["type"] == "http_error"
    assert body["error"]["correlation_id"]
    assert body["success"] is False
    # Should not leak details in production
    assert "details" not in body["error"]


def test_http_exception_development():
    client = build_test_app("development")
    resp = client.get("/unauthorized")
    assert resp.status_code == 401
    body = resp.json()
    assert body["error"]["type"] == "http_error"
    assert body["error"]["details"]["detail"] == "Could not validate credentials"
