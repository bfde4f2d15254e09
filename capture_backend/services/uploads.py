"""Helpers for turning request payloads into image upload sources."""

from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
import os
import tempfile
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Sequence, Union

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = "data:"
BASE64_MARKER = ";base64"


@dataclass(slots=True)
class FileUploadSource:
    """A multipart attachment spooled to local disk.

    ``path`` is ``None`` when the attachment had nothing to spool.
    """

    path: Path | None
    original_name: str | None = None
    content_type: str | None = None

    is_file_backed = True

    @property
    def label(self) -> str:
        return self.original_name or (self.path.name if self.path else "<unnamed>")

    @property
    def filename(self) -> str:
        if self.path is None:
            raise ValueError("attachment has no local path")
        return self.path.name

    def read_bytes(self) -> bytes:
        if self.path is None:
            raise ValueError("attachment has no local path")
        return self.path.read_bytes()


@dataclass(slots=True)
class InlineUploadSource:
    """A base64 string or data URL sent in the ``image`` field."""

    data: str

    is_file_backed = False

    @property
    def label(self) -> str:
        return "inline image"

    @property
    def content_type(self) -> str | None:
        return parse_data_url_media_type(self.data)

    @property
    def filename(self) -> str:
        extension = ""
        if self.content_type:
            extension = mimetypes.guess_extension(self.content_type) or ""
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        return f"{timestamp}-{uuid.uuid4().hex[:12]}{extension}"

    def read_bytes(self) -> bytes:
        return decode_inline_image(self.data)


UploadSource = Union[FileUploadSource, InlineUploadSource]


def parse_data_url_media_type(data: str) -> str | None:
    """Return the media type declared by a data URL, if any."""

    candidate = data.strip()
    if not candidate.startswith(DATA_URL_PREFIX):
        return None
    header, _, _ = candidate.partition(",")
    media_type = header[len(DATA_URL_PREFIX) :].split(";", 1)[0].strip()
    return media_type.lower() or None


def decode_inline_image(data: str) -> bytes:
    """Decode a data URL or bare base64 string into raw image bytes."""

    candidate = data.strip()
    if not candidate:
        raise ValueError("inline image is empty")

    if candidate.startswith(DATA_URL_PREFIX):
        header, separator, payload = candidate.partition(",")
        if not separator or not header.lower().endswith(BASE64_MARKER):
            raise ValueError("inline image must be a base64 data URL")
        candidate = payload

    try:
        image_bytes = base64.b64decode("".join(candidate.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("inline image is not valid base64") from exc

    if not image_bytes:
        raise ValueError("inline image decoded to zero bytes")
    return image_bytes


def _spooled_suffix(original_name: str | None) -> str:
    safe_name = secure_filename(original_name or "")
    return Path(safe_name).suffix.lower() if safe_name else ""


def spool_uploads(
    files: Iterable[FileStorage],
    upload_dir: Path,
) -> list[FileUploadSource]:
    """Write multipart attachments to ``upload_dir`` in submission order."""

    upload_dir.mkdir(parents=True, exist_ok=True)
    spooled: list[FileUploadSource] = []
    for upload in files:
        if not upload.filename:
            spooled.append(
                FileUploadSource(path=None, content_type=upload.mimetype)
            )
            continue

        fd, raw_path = tempfile.mkstemp(
            prefix="upload-",
            suffix=_spooled_suffix(upload.filename),
            dir=upload_dir,
        )
        path = Path(raw_path)
        try:
            with os.fdopen(fd, "wb") as handle:
                upload.save(handle)
        except OSError:
            discard_spooled_file(path)
            for earlier in spooled:
                if earlier.path is not None:
                    discard_spooled_file(earlier.path)
            raise
        spooled.append(
            FileUploadSource(
                path=path,
                original_name=upload.filename,
                content_type=upload.mimetype or None,
            )
        )
    return spooled


def resolve_upload_sources(
    attachments: Sequence[FileUploadSource],
    inline_image: object,
) -> list[UploadSource]:
    """Return the ordered upload sources for a capture.

    Attachments win; the inline ``image`` field is only used when no
    attachment was sent.
    """

    if attachments:
        return list(attachments)
    if isinstance(inline_image, str) and inline_image.strip():
        return [InlineUploadSource(data=inline_image)]
    return []


def discard_spooled_file(path: Path) -> None:
    """Remove a spooled attachment, ignoring any filesystem error."""

    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.debug(
            "could not remove spooled upload", extra={"path": str(path)}
        )


@contextmanager
def released_after_use(source: UploadSource) -> Iterator[UploadSource]:
    """Yield ``source`` and drop its local file once the caller is done."""

    try:
        yield source
    finally:
        if isinstance(source, FileUploadSource) and source.path is not None:
            discard_spooled_file(source.path)
