"""Defaults for the HTTP surface that are tracked in Git."""

# Port used when PORT is not set in the environment.
DEFAULT_PORT = 5000

# Largest request body accepted, uploads and base64 payloads included.
MAX_REQUEST_BYTES = 10 * 1024 * 1024

# Frontend origins allowed when CAPTURE_ALLOWED_ORIGINS is not set.
DEFAULT_ALLOWED_ORIGINS = (
    "http://localhost:5173",
    "https://capture-frontend-ten.vercel.app",
)

CORS_ALLOWED_METHODS = ("GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH")

CORS_ALLOWED_HEADERS = (
    "Content-Type",
    "Authorization",
    "X-Requested-With",
    "X-Last-Check",
)
