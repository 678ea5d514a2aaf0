"""Generate endpoint: event stream for streaming providers, JSON otherwise."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable, Coroutine
from contextlib import aclosing
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.routing import APIRoute
from starlette.responses import Response

from dependencies.generation import Gateway
from schemas.generation import DoneEvent, ErrorEvent, GenerationRequest
from services.generation.adapters import GenerationCall
from services.generation.exceptions import BadRequest, http_status_for_code
from services.generation.gateway import GenerationGateway


logger = logging.getLogger(__name__)

STREAM_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


def describe_validation_error(exc: RequestValidationError) -> str:
    """One-line summary naming the offending body fields by wire name."""
    fields: list[str] = []
    for error in exc.errors():
        loc = error.get("loc", ())[1:]
        path = ".".join(part for part in loc if isinstance(part, str))
        if path and path not in fields:
            fields.append(path)
    if not fields:
        return "Invalid request body"
    return f"Invalid request fields: {', '.join(fields)}"


class GenerateRoute(APIRoute):
    """Route that reports body validation failures as ``{error}`` with 400."""

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        handler = super().get_route_handler()

        async def route_handler(request: Request) -> Response:
            try:
                return await handler(request)
            except RequestValidationError as exc:
                message = describe_validation_error(exc)
                logger.info("Rejected generate request: %s", message)
                return JSONResponse(
                    status_code=status.HTTP_400_BAD_REQUEST, content={"error": message}
                )

        return route_handler


router = APIRouter(tags=["generation"], route_class=GenerateRoute)


def _stream_response(gateway: GenerationGateway, call: GenerationCall) -> StreamingResponse:
    async def event_stream() -> AsyncGenerator[str, None]:
        # Closing this generator (client went away) closes the upstream call.
        async with aclosing(gateway.run(call)) as events:
            async for event in events:
                yield event.to_sse()

    return StreamingResponse(
        event_stream(), media_type="text/event-stream", headers=STREAM_HEADERS
    )


async def _batch_response(gateway: GenerationGateway, call: GenerationCall) -> JSONResponse:
    async with aclosing(gateway.run(call)) as events:
        async for event in events:
            if isinstance(event, DoneEvent):
                return JSONResponse(content={"content": event.content})
            if isinstance(event, ErrorEvent):
                return JSONResponse(
                    status_code=http_status_for_code(event.error_code),
                    content={"error": event.message},
                )

    logger.error("Batch generation for %s ended without a result", call.provider.value)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Generation ended without a result"},
    )


@router.post(
    "/generate",
    response_model=None,
    responses={
        200: {
            "description": "Event stream for streaming providers, `{content}` otherwise",
            "content": {"text/event-stream": {}, "application/json": {}},
        },
        400: {"description": "Missing, mistyped or invalid request fields"},
        401: {"description": "Provider rejected the API key"},
        502: {"description": "Provider request failed"},
    },
)
async def generate(payload: GenerationRequest, gateway: Gateway) -> Response:
    """Generate a table of contents, a chapter, or free-form content.

    Streaming providers answer with ``data: {json}`` frames (``{chunk}``,
    ``{done, content, metadata}`` or ``{error}``). Batch providers answer
    with ``{content}`` or ``{error}``.
    """
    try:
        call = gateway.prepare(payload)
    except BadRequest as exc:
        logger.info("Rejected generate request: %s", exc.message)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content={"error": exc.message}
        )

    if gateway.is_streaming(call.provider):
        return _stream_response(gateway, call)
    return await _batch_response(gateway, call)
