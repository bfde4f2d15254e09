"""S3-backed storage helpers for captured images."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional
from urllib.parse import quote

import boto3
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

if TYPE_CHECKING:
    from .uploads import UploadSource

logger = logging.getLogger(__name__)

_MISSING_OBJECT_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass(slots=True)
class MediaStorageSettings:
    """Configuration block for capture image storage."""

    bucket: str
    region_name: Optional[str] = None
    endpoint_url: Optional[str] = None
    base_prefix: str = "captures"
    public_base_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None


class MediaStorageError(RuntimeError):
    """Raised when a single image cannot be written to object storage."""


class S3MediaStorage:
    """Wrapper around boto3 that hands out public URLs for stored images."""

    def __init__(
        self,
        settings: MediaStorageSettings,
        *,
        client: BaseClient | None = None,
    ) -> None:
        self._settings = settings
        self._client: BaseClient = client or boto3.client(
            "s3",
            region_name=settings.region_name,
            endpoint_url=settings.endpoint_url,
            aws_access_key_id=settings.access_key_id,
            aws_secret_access_key=settings.secret_access_key,
        )

    @property
    def bucket(self) -> str:
        return self._settings.bucket

    def build_key(self, filename: str) -> str:
        prefix = self._settings.base_prefix.strip("/")
        return f"{prefix}/{filename}" if prefix else filename

    def build_public_url(self, key: str) -> str:
        """Return the URL clients use to fetch the object at ``key``."""

        quoted_key = quote(key)
        settings = self._settings
        if settings.public_base_url:
            return f"{settings.public_base_url.rstrip('/')}/{quoted_key}"
        if settings.endpoint_url:
            endpoint = settings.endpoint_url.rstrip("/")
            return f"{endpoint}/{settings.bucket}/{quoted_key}"
        if settings.region_name:
            return (
                f"https://{settings.bucket}.s3.{settings.region_name}"
                f".amazonaws.com/{quoted_key}"
            )
        return f"https://{settings.bucket}.s3.amazonaws.com/{quoted_key}"

    def object_exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self._settings.bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_OBJECT_CODES:
                return False
            raise MediaStorageError("failed to inspect object in S3") from exc
        except BotoCoreError as exc:  # pragma: no cover - external
            raise MediaStorageError("failed to inspect object in S3") from exc
        return True

    def store_image_bytes(
        self,
        *,
        filename: str,
        image_bytes: bytes,
        content_type: str | None = None,
    ) -> str:
        """Persist the provided bytes and return the object key.

        Existing objects are never overwritten; when the key is already taken
        the stored object is left alone and its key is returned.
        """

        key = self.build_key(filename)
        if self.object_exists(key):
            logger.info(
                "object already stored; skipping write", extra={"key": key}
            )
            return key

        try:
            params: dict[str, object] = {
                "Bucket": self._settings.bucket,
                "Key": key,
                "Body": image_bytes,
            }
            if content_type:
                params["ContentType"] = content_type
            self._client.put_object(**params)
        except (BotoCoreError, ClientError) as exc:
            raise MediaStorageError("failed to write image to S3") from exc

        return key

    def upload(self, source: UploadSource) -> str:
        """Store the bytes behind ``source`` and return their public URL."""

        key = self.store_image_bytes(
            filename=source.filename,
            image_bytes=source.read_bytes(),
            content_type=source.content_type,
        )
        return self.build_public_url(key)


def init_media_storage(settings: MediaStorageSettings) -> S3MediaStorage:
    """Factory to mirror the init_* pattern used across services."""

    return S3MediaStorage(settings)
