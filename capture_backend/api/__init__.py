"""API package wiring for the capture backend."""

from flask import Flask

from .capture import bp as capture_bp


def init_app(app: Flask) -> None:
    """Register all API blueprints on the given application."""

    app.register_blueprint(capture_bp)
