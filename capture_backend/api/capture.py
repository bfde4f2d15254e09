"""Endpoint that handles capture submissions."""

from __future__ import annotations

import json
from typing import Any

from flask import Blueprint, current_app, jsonify, request
from werkzeug.datastructures import FileStorage, MultiDict
from werkzeug.exceptions import HTTPException

from capture_backend.api.deps import (
    get_db_session,
    get_media_storage,
    get_upload_dir,
)
from capture_backend.services.capture import (
    DuplicateCaptureError,
    NoImageUploadedError,
    ingest_capture,
)
from capture_backend.services.uploads import (
    FileUploadSource,
    discard_spooled_file,
    resolve_upload_sources,
    spool_uploads,
)

UPLOADS_FIELD = "uploads"
DUPLICATE_MESSAGE = "Data with this IpAddress already exists."
NO_IMAGE_MESSAGE = "No image uploaded successfully"

bp = Blueprint("capture", __name__, url_prefix="/api")


def _parse_form_location(form: MultiDict) -> Any:
    """Read ``location`` from a JSON-encoded field or bracketed form keys."""

    raw_location = form.get("location")
    if raw_location:
        try:
            return json.loads(raw_location)
        except ValueError:
            return raw_location

    latitude = form.get("location[latitude]")
    longitude = form.get("location[longitude]")
    if latitude is None and longitude is None:
        return None
    return {"latitude": latitude, "longitude": longitude}


def _read_capture_payload() -> tuple[dict[str, Any], list[FileStorage]]:
    """Return the capture fields and any multipart attachments."""

    if request.is_json:
        body = request.get_json(silent=True)
        return (body if isinstance(body, dict) else {}), []

    form = request.form
    fields = {
        "image": form.get("image"),
        "location": _parse_form_location(form),
        "deviceInfo": form.get("deviceInfo"),
        "ipAddress": form.get("ipAddress"),
    }
    return fields, request.files.getlist(UPLOADS_FIELD)


@bp.post("/capture")
def create_capture():
    """Upload the submitted image and record the capture for its IP."""

    try:
        storage = get_media_storage()
    except RuntimeError as exc:
        return jsonify(error=str(exc)), 503

    try:
        session = get_db_session()
    except RuntimeError as exc:
        return jsonify(error=str(exc)), 503

    attachments: list[FileUploadSource] = []
    try:
        fields, files = _read_capture_payload()
        attachments = spool_uploads(files, get_upload_dir())
        sources = resolve_upload_sources(attachments, fields.get("image"))
        result = ingest_capture(
            session=session,
            uploader=storage,
            sources=sources,
            location=fields.get("location"),
            device_info=fields.get("deviceInfo"),
            ip_address=fields.get("ipAddress"),
        )
    except NoImageUploadedError:
        return (
            jsonify(
                status="error",
                message=NO_IMAGE_MESSAGE,
                error=True,
                success=False,
            ),
            400,
        )
    except DuplicateCaptureError:
        current_app.logger.info(
            "capture rejected; ip address already recorded",
            extra={"ip_address": fields.get("ipAddress")},
        )
        return jsonify(message=DUPLICATE_MESSAGE, error=True, success=False)
    except HTTPException:
        raise
    except Exception as exc:  # noqa: BLE001 - reported to the client as a 500
        current_app.logger.exception("error handling capture")
        return (
            jsonify(
                status="error",
                message="Failed to capture data",
                details=str(exc),
            ),
            500,
        )
    finally:
        for attachment in attachments:
            if attachment.path is not None:
                discard_spooled_file(attachment.path)
        session.close()

    return jsonify(
        status="success",
        message="Data captured!",
        imageUrl=result.image_url,
        location=fields.get("location"),
        deviceInfo=fields.get("deviceInfo"),
        ipAddress=fields.get("ipAddress"),
    )
