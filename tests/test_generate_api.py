"""Tests for POST /api/v1/generate."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from main import app
from schemas.generation import GenerationRequest
from services.generation.accumulator import GenerationClient


def _parse_sse(text: str) -> list[dict[str, Any]]:
    """Parse event-stream text into the list of JSON payloads."""
    return [
        json.loads(line[len("data: ") :])
        for line in text.splitlines()
        if line.startswith("data: ")
    ]


def anthropic_stream(*texts: str, stop: bool = True) -> bytes:
    events: list[dict[str, Any]] = [
        {"type": "message_start", "message": {"usage": {"input_tokens": 7, "output_tokens": 1}}}
    ]
    events += [{"type": "content_block_delta", "delta": {"text": t}} for t in texts]
    if stop:
        events += [
            {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 9}},
            {"type": "message_stop"},
        ]
    return "".join(f"event: {e['type']}\ndata: {json.dumps(e)}\n\n" for e in events).encode()


CLAUDE_REQUEST = {
    "provider": "claude",
    "apiKey": "sk-ant-test",
    "model": "claude-sonnet-4-20250514",
    "prompt": "Write the introduction",
    "type": "chapter",
    "context": {"bookTitle": "Async Python", "chapterTitle": "Event Loops"},
}
OPENAI_REQUEST = {
    "provider": "openai",
    "apiKey": "sk-test",
    "model": "gpt-4o",
    "prompt": "Outline a book",
    "type": "toc",
}


class TestValidation:
    """Missing fields are a 400 with an ``{error}`` body, never a 422."""

    def test_missing_fields(self, client: TestClient) -> None:
        response = client.post("/api/v1/generate", json={"provider": "openai"})

        assert response.status_code == 400
        body = response.json()
        assert set(body) == {"error"}
        assert "Missing required fields" in body["error"]
        assert "API key missing for openai" in body["error"]

    def test_empty_body(self, client: TestClient) -> None:
        response = client.post("/api/v1/generate", json={})
        assert response.status_code == 400

    def test_unknown_provider(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/generate",
            json={**OPENAI_REQUEST, "provider": "mistral"},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Unsupported provider: mistral"}

    def test_mistyped_field_is_400(self, client: TestClient) -> None:
        response = client.post("/api/v1/generate", json={**OPENAI_REQUEST, "provider": 5})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid request fields: provider"}

    def test_out_of_range_context_is_400(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/generate",
            json={**CLAUDE_REQUEST, "context": {"targetWordCount": 0}},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid request fields: context.targetWordCount"}

    def test_malformed_json_is_400(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/generate",
            content=b'{"provider": ',
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert set(response.json()) == {"error"}

    def test_no_upstream_call_on_bad_request(self, client: TestClient, mock_upstream) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        mock_upstream(handler)
        client.post("/api/v1/generate", json={"provider": "claude", "model": "m"})
        assert calls == []


class TestStreamingProvider:
    """Claude answers with an event stream."""

    def test_stream_frames(self, client: TestClient, mock_upstream) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=anthropic_stream("Event loops ", "schedule."))

        mock_upstream(handler)
        response = client.post("/api/v1/generate", json=CLAUDE_REQUEST)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert _parse_sse(response.text) == [
            {"chunk": "Event loops "},
            {"chunk": "schedule."},
            {
                "done": True,
                "content": "Event loops schedule.",
                "metadata": {
                    "stopReason": "end_turn",
                    "inputTokens": 7,
                    "outputTokens": 9,
                    "wordCount": 3,
                },
            },
        ]
        upstream = json.loads(seen[0].content)
        assert upstream["stream"] is True
        assert "Async Python" in upstream["system"]

    def test_stream_without_stop_is_completed(self, client: TestClient, mock_upstream) -> None:
        mock_upstream(
            lambda request: httpx.Response(200, content=anthropic_stream("cut", stop=False))
        )
        payloads = _parse_sse(client.post("/api/v1/generate", json=CLAUDE_REQUEST).text)

        assert payloads[-1]["done"] is True
        assert payloads[-1]["metadata"]["stopReason"] == "stream_ended"

    def test_upstream_auth_error_is_an_error_frame(self, client: TestClient, mock_upstream) -> None:
        mock_upstream(
            lambda request: httpx.Response(
                401, json={"type": "error", "error": {"message": "invalid x-api-key"}}
            )
        )
        response = client.post("/api/v1/generate", json=CLAUDE_REQUEST)

        assert response.status_code == 200
        assert _parse_sse(response.text) == [{"error": "invalid x-api-key"}]

    def test_correlation_id_echoed(self, client: TestClient, mock_upstream) -> None:
        mock_upstream(lambda request: httpx.Response(200, content=anthropic_stream("x.")))
        response = client.post(
            "/api/v1/generate",
            json=CLAUDE_REQUEST,
            headers={"X-Correlation-ID": "wizard-123"},
        )
        assert response.headers["X-Correlation-ID"] == "wizard-123"


class TestBatchProvider:
    """OpenAI and Gemini answer with JSON."""

    def test_content(self, client: TestClient, mock_upstream) -> None:
        mock_upstream(
            lambda request: httpx.Response(
                200, json={"choices": [{"message": {"content": "[]"}, "finish_reason": "stop"}]}
            )
        )
        response = client.post("/api/v1/generate", json=OPENAI_REQUEST)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert response.json() == {"content": "[]"}

    def test_invalid_key_is_401(self, client: TestClient, mock_upstream) -> None:
        mock_upstream(
            lambda request: httpx.Response(401, json={"error": {"message": "invalid key"}})
        )
        response = client.post("/api/v1/generate", json=OPENAI_REQUEST)

        assert response.status_code == 401
        assert response.json() == {"error": "invalid key"}

    def test_protocol_error_is_502(self, client: TestClient, mock_upstream) -> None:
        mock_upstream(
            lambda request: httpx.Response(429, json={"error": {"message": "Rate limit reached"}})
        )
        response = client.post("/api/v1/generate", json={**OPENAI_REQUEST, "provider": "gemini"})

        assert response.status_code == 502
        assert response.json() == {"error": "Rate limit reached"}

    def test_opaque_error_is_502(self, client: TestClient, mock_upstream) -> None:
        mock_upstream(lambda request: httpx.Response(503, text="upstream unavailable"))
        response = client.post("/api/v1/generate", json=OPENAI_REQUEST)

        assert response.status_code == 502
        assert "upstream unavailable" in response.json()["error"]


@pytest.mark.asyncio
async def test_client_round_trip_through_app(mock_upstream) -> None:
    """GenerationClient against the real app, with the provider mocked."""
    truncated = '[{"id":"ch-1","title":"Intro","slug":"intro"},{"id":"ch-2","ti'
    mock_upstream(lambda request: httpx.Response(200, content=anthropic_stream(truncated)))

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as http:
        client = GenerationClient("http://testserver", client=http)
        progress: list[str] = []
        nodes = await client.generate_outline(
            GenerationRequest(
                provider="claude", api_key="k", model="claude-sonnet-4", prompt="Outline"
            ),
            on_progress=progress.append,
        )

    assert progress == [truncated]
    assert [node.id for node in nodes] == ["ch-1"]
