"""Shared API dependencies and helpers."""

from pathlib import Path

from flask import current_app
from sqlalchemy.orm import Session, sessionmaker

from capture_backend.services.storage import S3MediaStorage


def get_sessionmaker() -> sessionmaker:
    """Return the configured SQLAlchemy session factory."""

    session_factory: sessionmaker | None = current_app.extensions.get(
        "db_sessionmaker"
    )
    if session_factory is None:
        raise RuntimeError("database session factory is not configured")
    return session_factory


def get_db_session() -> Session:
    """Return a database session scoped to the current request context."""

    return get_sessionmaker()()


def get_media_storage() -> S3MediaStorage:
    """Return the media storage client created at startup."""

    storage: S3MediaStorage | None = current_app.extensions.get("media_storage")
    if storage is None:
        raise RuntimeError("media storage client is not configured")
    return storage


def get_upload_dir() -> Path:
    """Return the directory multipart attachments are spooled to."""

    return Path(current_app.config["UPLOAD_DIR"])
