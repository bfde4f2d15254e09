import logging
import os
import tempfile
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from capture_backend.api import init_app as init_api
from capture_backend.config import (
    CORS_ALLOWED_HEADERS,
    CORS_ALLOWED_METHODS,
    DEFAULT_ALLOWED_ORIGINS,
    MAX_REQUEST_BYTES,
)
from capture_backend.models import get_database_url
from capture_backend.services.storage import (
    MediaStorageSettings,
    init_media_storage,
)

LIVENESS_MESSAGE = "Backend is running successfully!"


def create_app() -> Flask:
    """Application factory for the capture backend.

    Raises ``RuntimeError`` when ``DATABASE_URL`` is missing so the process
    stops before it serves traffic.
    """
    load_dotenv()
    app = Flask(__name__)

    app.config["MAX_CONTENT_LENGTH"] = MAX_REQUEST_BYTES
    app.config["UPLOAD_DIR"] = os.environ.get("CAPTURE_UPLOAD_DIR") or str(
        Path(tempfile.gettempdir()) / "capture-uploads"
    )

    _configure_logging(app)
    _configure_cors(app)
    _init_database(app)

    storage_bucket = os.environ.get("CAPTURE_S3_BUCKET")
    if storage_bucket:
        storage_settings = MediaStorageSettings(
            bucket=storage_bucket,
            region_name=os.environ.get("CAPTURE_S3_REGION"),
            endpoint_url=os.environ.get("CAPTURE_S3_ENDPOINT_URL"),
            base_prefix=os.environ.get("CAPTURE_S3_BASE_PREFIX", "captures"),
            public_base_url=os.environ.get("CAPTURE_S3_PUBLIC_BASE_URL"),
            access_key_id=os.environ.get("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY"),
        )
        app.extensions["media_storage"] = init_media_storage(storage_settings)
    else:
        app.logger.warning(
            "CAPTURE_S3_BUCKET not set; capture uploads disabled"
        )

    @app.get("/")
    def liveness():
        return LIVENESS_MESSAGE, 200, {"Content-Type": "text/plain; charset=utf-8"}

    @app.get("/healthz")
    def healthcheck():
        return jsonify(status="ok")

    init_api(app)

    return app


def _configure_logging(app: Flask) -> None:
    """Ensure application and root loggers emit INFO-level logs."""

    logging.basicConfig(level=logging.INFO)
    logging.getLogger().setLevel(logging.INFO)
    app.logger.setLevel(logging.INFO)


def _configure_cors(app: Flask) -> None:
    """Allow the configured frontend origins to call the API."""

    raw_origins = os.environ.get("CAPTURE_ALLOWED_ORIGINS", "")
    origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
    CORS(
        app,
        origins=origins or list(DEFAULT_ALLOWED_ORIGINS),
        methods=list(CORS_ALLOWED_METHODS),
        allow_headers=list(CORS_ALLOWED_HEADERS),
        supports_credentials=True,
    )


def _init_database(app: Flask) -> None:
    """Configure the SQLAlchemy session factory for request handlers."""

    database_url = get_database_url()

    engine = create_engine(database_url, pool_pre_ping=True)
    SessionLocal = sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )
    app.extensions["db_engine"] = engine
    app.extensions["db_sessionmaker"] = SessionLocal
