import json
import tempfile
import unittest
from io import BytesIO
from pathlib import Path
from unittest import mock

from flask import Flask
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from capture_backend.api import init_app as init_api
from capture_backend.models import Base, CaptureRecord
from capture_backend.services.storage import MediaStorageError

PNG_DATA_URL = "data:image/png;base64,aGVsbG8="


class _StubStorage:
    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.uploaded: list[tuple[str, bytes]] = []

    def upload(self, source):
        payload = source.read_bytes()
        self.uploaded.append((source.label, payload))
        outcome = (
            self.outcomes.pop(0)
            if self.outcomes
            else f"https://cdn.test/image-{len(self.uploaded)}.jpg"
        )
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class CaptureApiTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.upload_dir = Path(tmp.name)

        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        self.session_factory = sessionmaker(
            bind=engine, autoflush=False, expire_on_commit=False
        )

        self.storage = _StubStorage()
        self.app = Flask(__name__)
        self.app.config["UPLOAD_DIR"] = str(self.upload_dir)
        self.app.extensions["db_sessionmaker"] = self.session_factory
        self.app.extensions["media_storage"] = self.storage
        init_api(self.app)
        self.client = self.app.test_client()

    def _records(self) -> list[CaptureRecord]:
        with self.session_factory() as session:
            return list(session.execute(select(CaptureRecord)).scalars())

    def test_multipart_upload_stores_first_file_url(self):
        response = self.client.post(
            "/api/capture",
            data={
                "uploads": [
                    (BytesIO(b"first"), "first.jpg"),
                    (BytesIO(b"second"), "second.jpg"),
                ],
                "location": json.dumps({"latitude": 51.5, "longitude": -0.12}),
                "deviceInfo": "Pixel 8",
                "ipAddress": "203.0.113.7",
            },
            content_type="multipart/form-data",
        )

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["status"], "success")
        self.assertEqual(body["message"], "Data captured!")
        self.assertEqual(body["imageUrl"], "https://cdn.test/image-1.jpg")
        self.assertEqual(body["location"], {"latitude": 51.5, "longitude": -0.12})
        self.assertEqual(body["deviceInfo"], "Pixel 8")
        self.assertEqual(body["ipAddress"], "203.0.113.7")
        self.assertEqual(
            self.storage.uploaded,
            [("first.jpg", b"first"), ("second.jpg", b"second")],
        )

        records = self._records()
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].image_url, "https://cdn.test/image-1.jpg")
        self.assertEqual((records[0].latitude, records[0].longitude), (51.5, -0.12))
        self.assertEqual(list(self.upload_dir.iterdir()), [])

    def test_inline_data_url_uploaded_without_attachments(self):
        response = self.client.post(
            "/api/capture",
            json={
                "image": PNG_DATA_URL,
                "location": {"latitude": 1, "longitude": 2},
                "deviceInfo": {"userAgent": "Safari"},
                "ipAddress": "198.51.100.1",
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["deviceInfo"], {"userAgent": "Safari"})
        self.assertEqual(self.storage.uploaded, [("inline image", b"hello")])
        (record,) = self._records()
        self.assertEqual(record.image_url, body["imageUrl"])
        self.assertEqual(record.device_info, '{"userAgent":"Safari"}')

    def test_inline_image_ignored_when_attachments_present(self):
        response = self.client.post(
            "/api/capture",
            data={
                "uploads": [(BytesIO(b"file-bytes"), "photo.jpg")],
                "image": PNG_DATA_URL,
                "ipAddress": "198.51.100.2",
            },
            content_type="multipart/form-data",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.storage.uploaded, [("photo.jpg", b"file-bytes")])

    def test_first_successful_upload_wins(self):
        self.storage.outcomes = [
            MediaStorageError("down"),
            "https://cdn.test/second.jpg",
            "https://cdn.test/third.jpg",
        ]

        response = self.client.post(
            "/api/capture",
            data={
                "uploads": [
                    (BytesIO(b"1"), "1.jpg"),
                    (BytesIO(b"2"), "2.jpg"),
                    (BytesIO(b"3"), "3.jpg"),
                ],
                "ipAddress": "198.51.100.3",
            },
            content_type="multipart/form-data",
        )

        self.assertEqual(response.get_json()["imageUrl"], "https://cdn.test/second.jpg")
        (record,) = self._records()
        self.assertEqual(record.image_url, "https://cdn.test/second.jpg")

    def test_missing_image_returns_400_without_writing(self):
        for payload in ({"ipAddress": "192.0.2.10"}, {"image": "", "ipAddress": "192.0.2.10"}):
            with self.subTest(payload=payload):
                response = self.client.post("/api/capture", json=payload)

                self.assertEqual(response.status_code, 400)
                self.assertEqual(
                    response.get_json(),
                    {
                        "status": "error",
                        "message": "No image uploaded successfully",
                        "error": True,
                        "success": False,
                    },
                )
        self.assertEqual(self._records(), [])

    def test_duplicate_ip_returns_soft_failure(self):
        payload = {"image": PNG_DATA_URL, "ipAddress": "192.0.2.20"}
        first = self.client.post("/api/capture", json=payload)
        second = self.client.post("/api/capture", json=payload)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(
            second.get_json(),
            {
                "message": "Data with this IpAddress already exists.",
                "error": True,
                "success": False,
            },
        )
        with self.session_factory() as session:
            count = session.execute(
                select(func.count())
                .select_from(CaptureRecord)
                .where(CaptureRecord.ip_address == "192.0.2.20")
            ).scalar_one()
        self.assertEqual(count, 1)

    def test_missing_location_defaults_to_zero(self):
        response = self.client.post(
            "/api/capture",
            data={
                "image": PNG_DATA_URL,
                "location[latitude]": "not-a-number",
                "ipAddress": "192.0.2.30",
            },
        )

        self.assertEqual(response.status_code, 200)
        (record,) = self._records()
        self.assertEqual((record.latitude, record.longitude), (0.0, 0.0))

    def test_uploader_error_on_one_file_still_captures(self):
        self.storage.outcomes = [
            RuntimeError("bucket exploded"),
            "https://cdn.test/second.jpg",
        ]

        response = self.client.post(
            "/api/capture",
            data={
                "uploads": [(BytesIO(b"1"), "1.jpg"), (BytesIO(b"2"), "2.jpg")],
                "ipAddress": "192.0.2.41",
            },
            content_type="multipart/form-data",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["imageUrl"], "https://cdn.test/second.jpg")
        self.assertEqual(
            self.storage.uploaded, [("1.jpg", b"1"), ("2.jpg", b"2")]
        )
        self.assertEqual(list(self.upload_dir.iterdir()), [])

    def test_database_failure_returns_500_with_details(self):
        lookup_failure = OperationalError(
            "SELECT", {}, Exception("database unavailable")
        )

        with mock.patch(
            "capture_backend.services.capture.find_capture_by_ip",
            side_effect=lookup_failure,
        ):
            response = self.client.post(
                "/api/capture",
                data={
                    "uploads": [(BytesIO(b"1"), "1.jpg")],
                    "ipAddress": "192.0.2.40",
                },
                content_type="multipart/form-data",
            )

        self.assertEqual(response.status_code, 500)
        self.assertEqual(
            response.get_json(),
            {
                "status": "error",
                "message": "Failed to capture data",
                "details": "failed to look up existing capture",
            },
        )
        self.assertEqual(self._records(), [])
        self.assertEqual(list(self.upload_dir.iterdir()), [])

    def test_missing_storage_returns_503(self):
        del self.app.extensions["media_storage"]

        response = self.client.post(
            "/api/capture", json={"image": PNG_DATA_URL}
        )

        self.assertEqual(response.status_code, 503)
        self.assertIn("error", response.get_json())


if __name__ == "__main__":
    unittest.main()
