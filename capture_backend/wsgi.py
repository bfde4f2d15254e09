"""WSGI entry point; importing this module builds the application."""

import os

from capture_backend import create_app
from capture_backend.config import DEFAULT_PORT

app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", DEFAULT_PORT)))
