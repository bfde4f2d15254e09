"""SQLAlchemy models for the capture backend."""

from __future__ import annotations

import os
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, Index, String, Text, Uuid, func, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

IP_ADDRESS_MAX_LENGTH = 64


class Base(DeclarativeBase):
    """Base class that configures UUID primary keys by default."""

    type_annotation_map = {
        uuid.UUID: Uuid(as_uuid=True),
    }


class TimestampMixin:
    """Mixin that provides automatic creation and update timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class CaptureRecord(TimestampMixin, Base):
    """One stored capture: image location, geolocation and device metadata."""

    __tablename__ = "captures"
    __table_args__ = (
        # Empty addresses are not deduplicated.
        Index(
            "uq_captures_ip_address",
            "ip_address",
            unique=True,
            postgresql_where=text("ip_address <> ''"),
            sqlite_where=text("ip_address <> ''"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    image_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    latitude: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, server_default=text("0")
    )
    longitude: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, server_default=text("0")
    )
    device_info: Mapped[Optional[str]] = mapped_column(Text)
    ip_address: Mapped[str] = mapped_column(
        String(IP_ADDRESS_MAX_LENGTH),
        nullable=False,
        default="",
        server_default=text("''"),
    )

    @property
    def location(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


def get_database_url() -> str:
    """Return the configured DATABASE_URL."""

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL environment variable is not set")

    # Normalize common Postgres URL forms to the installed psycopg v3 driver.
    if database_url.startswith("postgres://"):
        return "postgresql+psycopg://" + database_url[len("postgres://") :]
    if database_url.startswith("postgresql://"):
        return "postgresql+psycopg://" + database_url[len("postgresql://") :]
    if database_url.startswith("postgresql+psycopg2://"):
        return (
            "postgresql+psycopg://"
            + database_url[len("postgresql+psycopg2://") :]
        )

    return database_url
