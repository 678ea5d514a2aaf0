import logging
from urllib.parse import urlparse

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.v1.api import api_router
from core.config import get_settings
from core.error_handler import (
    ExceptionNormalizationMiddleware,
    global_exception_handler,
    setup_logging,
)
from core.middleware import CorrelationIdMiddleware
from services.generation.exceptions import GenerationError


def validate_cors_origins(origins: list[str]) -> list[str]:
    """Validate and sanitize CORS origins."""

    validated_origins = []

    def is_valid_url(url: str) -> bool:
        parsed = urlparse(url)
        return bool(parsed.scheme in {"http", "https"} and parsed.netloc)

    for origin in origins:
        if origin == "*" or is_valid_url(origin):
            validated_origins.append(origin)
        else:
            logging.warning(f"Invalid CORS origin '{origin}' ignored")

    return validated_origins


settings = get_settings()
setup_logging()

app = FastAPI(
    title=settings.APP_NAME,
    description="Generation gateway for the book-writing wizard",
    version="0.1.0",
    docs_url=None,  # We'll mount docs under /api/v1/docs
    redoc_url=None,
)

# Middleware added last runs first: correlation IDs wrap everything else.
app.add_middleware(ExceptionNormalizationMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=validate_cors_origins(list(settings.CORS_ORIGINS)),
    allow_credentials=settings.ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)
app.add_middleware(CorrelationIdMiddleware)

app.add_exception_handler(StarletteHTTPException, global_exception_handler)
app.add_exception_handler(RequestValidationError, global_exception_handler)
app.add_exception_handler(GenerationError, global_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Include API routes
app.include_router(api_router, prefix="/api/v1")


# Mount OpenAPI docs under /api/v1/docs and /api/v1/redoc
@app.get("/api/v1/docs", include_in_schema=False)
def custom_swagger_ui_html():
    return get_swagger_ui_html(
        openapi_url="/openapi.json", title=f"{settings.APP_NAME} Docs"
    )


@app.get("/api/v1/redoc", include_in_schema=False)
def redoc_html():
    return get_redoc_html(openapi_url="/openapi.json", title=f"{settings.APP_NAME} Redoc")


@app.get("/")
def read_root() -> dict[str, str]:
    return {"message": f"{settings.APP_NAME} is running"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
