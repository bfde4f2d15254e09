"""Capture ingestion: upload the image, then store one record per IP."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from capture_backend.models import CaptureRecord
from capture_backend.services.uploads import UploadSource, released_after_use

logger = logging.getLogger(__name__)

DEFAULT_COORDINATE = 0.0


class MediaUploader(Protocol):
    def upload(self, source: UploadSource) -> str: ...


class CaptureError(RuntimeError):
    """Raised when a capture cannot be stored."""


class NoImageUploadedError(CaptureError):
    """Raised when none of the upload sources produced a URL."""


class DuplicateCaptureError(CaptureError):
    """Raised when a capture already exists for the submitted IP address."""


class CapturePersistenceError(CaptureError):
    """Raised when the capture record cannot be written to the database."""


@dataclass(slots=True)
class CaptureResult:
    """The stored record plus every URL produced while uploading."""

    record: CaptureRecord
    uploaded_urls: list[str]

    @property
    def image_url(self) -> str:
        return self.record.image_url


def _parse_coordinate(value: object) -> float:
    """Return a finite float, or the default for anything unusable."""

    if value is None or isinstance(value, bool):
        return DEFAULT_COORDINATE
    if isinstance(value, (int, float)):
        coordinate = float(value)
    elif isinstance(value, str):
        try:
            coordinate = float(value.strip())
        except ValueError:
            return DEFAULT_COORDINATE
    else:
        return DEFAULT_COORDINATE
    return coordinate if math.isfinite(coordinate) else DEFAULT_COORDINATE


def normalize_location(location: object) -> tuple[float, float]:
    """Return ``(latitude, longitude)`` with missing values set to 0."""

    if not isinstance(location, dict):
        return DEFAULT_COORDINATE, DEFAULT_COORDINATE
    return (
        _parse_coordinate(location.get("latitude")),
        _parse_coordinate(location.get("longitude")),
    )


def serialize_device_info(device_info: object) -> str | None:
    """Flatten structured device info into the string form that is stored."""

    if device_info is None:
        return None
    if isinstance(device_info, str):
        return device_info
    if isinstance(device_info, (dict, list)):
        return json.dumps(device_info, separators=(",", ":"))
    return str(device_info)


def normalize_ip_address(ip_address: object) -> str:
    if ip_address is None:
        return ""
    return str(ip_address).strip()


def upload_capture_sources(
    uploader: MediaUploader,
    sources: Sequence[UploadSource],
) -> list[str]:
    """Upload every source in order and return the URLs that succeeded.

    A failed upload is logged and skipped. Spooled files are removed after
    their attempt whatever the outcome.
    """

    uploaded_urls: list[str] = []
    for index, source in enumerate(sources):
        if source.is_file_backed and source.path is None:
            logger.error(
                "skipping attachment without a local path",
                extra={"index": index, "upload": source.label},
            )
            continue

        with released_after_use(source):
            logger.info("uploading %s", source.label, extra={"index": index})
            try:
                url = uploader.upload(source)
            except Exception:  # noqa: BLE001 - one failed upload never aborts the batch
                logger.exception(
                    "error uploading %s", source.label, extra={"index": index}
                )
                continue

        uploaded_urls.append(url)
        logger.info("uploaded %s", source.label, extra={"url": url})
    return uploaded_urls


def find_capture_by_ip(
    session: Session, ip_address: str
) -> CaptureRecord | None:
    return session.execute(
        select(CaptureRecord).where(CaptureRecord.ip_address == ip_address)
    ).scalars().first()


def _persist_capture(session: Session, record: CaptureRecord) -> None:
    try:
        session.add(record)
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise DuplicateCaptureError(
            "capture already exists for this ip address"
        ) from exc
    except SQLAlchemyError as exc:
        session.rollback()
        raise CapturePersistenceError("failed to persist capture") from exc


def ingest_capture(
    *,
    session: Session,
    uploader: MediaUploader,
    sources: Sequence[UploadSource],
    location: Any = None,
    device_info: Any = None,
    ip_address: Any = None,
) -> CaptureResult:
    """Upload the capture image and store a single record for the IP."""

    uploaded_urls = upload_capture_sources(uploader, sources)
    if not uploaded_urls:
        raise NoImageUploadedError("No image uploaded successfully")

    normalized_ip = normalize_ip_address(ip_address)
    if normalized_ip:
        try:
            existing = find_capture_by_ip(session, normalized_ip)
        except SQLAlchemyError as exc:
            session.rollback()
            raise CapturePersistenceError(
                "failed to look up existing capture"
            ) from exc
        if existing is not None:
            raise DuplicateCaptureError(
                "capture already exists for this ip address"
            )

    latitude, longitude = normalize_location(location)
    record = CaptureRecord(
        image_url=uploaded_urls[0],
        latitude=latitude,
        longitude=longitude,
        device_info=serialize_device_info(device_info),
        ip_address=normalized_ip,
    )
    _persist_capture(session, record)

    logger.info(
        "capture stored",
        extra={
            "image_url": record.image_url,
            "location": record.location,
            "device_info": record.device_info,
            "ip_address": record.ip_address,
        },
    )
    return CaptureResult(record=record, uploaded_urls=uploaded_urls)
