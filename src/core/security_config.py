"""Security configuration constants for the generation gateway.

This module centralizes:
- Keys that must be redacted from structured logs (credentials above all,
  since callers send provider API keys in the request body)
- The error response fields each environment may expose
"""

# Keys are matched case-insensitively as substrings, so "apiKey",
# "x-api-key" and "ANTHROPIC_API_KEY" are all caught by "key" / "api_key".
SENSITIVE_KEYS: set[str] = {
    "password",
    "secret",
    "access_token",
    "refresh_token",
    "auth_token",
    "authorization",
    "api_key",
    "apikey",
    "key",
    "credential",
    "bearer",
    "cookie",
    "set-cookie",
    "x-api-key",
    "x-goog-api-key",
    "session_id",
}

# In production, error responses only contain these fields
PRODUCTION_ERROR_FIELDS: set[str] = {
    "correlation_id",
    "type",
}

# Development additionally exposes diagnostics
DEVELOPMENT_ERROR_FIELDS: set[str] = PRODUCTION_ERROR_FIELDS | {
    "details",
    "traceback",
    "exception_type",
    "validation_errors",
}


def get_allowed_error_fields(environment: str) -> set[str]:
    """Get allowed error response fields based on environment.

    Args:
        environment: The application environment (production, development, etc.)

    Returns:
        Set of allowed field names for error responses
    """
    if environment == "production":
        return PRODUCTION_ERROR_FIELDS.copy()
    return DEVELOPMENT_ERROR_FIELDS.copy()


def is_sensitive_key(key: str) -> bool:
    """Return True if a key name should be redacted from logs."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in SENSITIVE_KEYS)
