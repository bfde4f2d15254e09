"""Static configuration shipped with the codebase."""

# HTTP defaults live in a dedicated module for clarity and reuse.
from .http import (
    CORS_ALLOWED_HEADERS,
    CORS_ALLOWED_METHODS,
    DEFAULT_ALLOWED_ORIGINS,
    DEFAULT_PORT,
    MAX_REQUEST_BYTES,
)

__all__ = [
    "CORS_ALLOWED_HEADERS",
    "CORS_ALLOWED_METHODS",
    "DEFAULT_ALLOWED_ORIGINS",
    "DEFAULT_PORT",
    "MAX_REQUEST_BYTES",
]
