"""
Integration tests for the /convert and /download endpoints.

Conversions run through the full stack (upload storage, job runner,
executor, registry) against fake converter scripts on PATH.
"""

import time

import pytest
from fastapi.testclient import TestClient

from relay.utils.retention import RetentionScheduler
from relay.utils.upload_storage import UploadStorage

from tests.fake_tools import LAST_ARG_OK, PANDOC_OK, SOFFICE_FAIL

DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class TestConvertEndpoint:

    def test_text_to_pdf(self, client: TestClient, fake_tools, output_dir, upload_dir):
        fake_tools.install("pandoc", PANDOC_OK)

        response = client.post(
            "/convert",
            files=[("files", ("notes.txt", b"Some notes\n", "text/plain"))],
            data={"targetFormat": "pdf"},
        )

        assert response.status_code == 200
        results = response.json()
        assert len(results) == 1
        result = results[0]
        assert result["success"] is True
        assert result["originalName"] == "notes.txt"
        assert result["message"] == "Conversion successful"
        assert result["downloadId"].endswith(".pdf")
        assert (output_dir / result["downloadId"]).is_file()
        assert "--pdf-engine=" in fake_tools.calls("pandoc")[0]
        assert list(upload_dir.iterdir()) == []

    def test_unsupported_target(self, client: TestClient, fake_tools, upload_dir):
        fake_tools.install("magick", LAST_ARG_OK)

        response = client.post(
            "/convert",
            files=[("files", ("photo.heic", b"\x00\x00\x00\x18ftypheic", "application/octet-stream"))],
            data={"targetFormat": "unknownformat"},
        )

        assert response.status_code == 200
        result = response.json()[0]
        assert result["success"] is False
        assert result["downloadId"] is None
        assert result["errorCode"] == "CONVERSION_NOT_SUPPORTED"
        assert fake_tools.all_calls() == {}
        assert list(upload_dir.iterdir()) == []

    def test_mixed_batch(self, client: TestClient, fake_tools, output_dir, upload_dir):
        fake_tools.install("magick", LAST_ARG_OK)
        fake_tools.install("soffice", SOFFICE_FAIL)

        response = client.post(
            "/convert",
            files=[
                ("files", ("image.png", b"\x89PNG\r\n\x1a\n", "image/png")),
                ("files", ("corrupt.docx", b"not really a docx", DOCX)),
            ],
            data={"targetFormat": "pdf"},
        )

        assert response.status_code == 200
        image_result, docx_result = response.json()
        assert image_result["originalName"] == "image.png"
        assert image_result["success"] is True
        assert docx_result["originalName"] == "corrupt.docx"
        assert docx_result["success"] is False
        assert docx_result["downloadId"] is None
        assert docx_result["errorCode"] == "TOOL_EXECUTION_FAILED"
        assert "could not be loaded" in docx_result["error"]

        # The partial soffice output is gone, only the image result remains
        assert [p.name for p in output_dir.iterdir()] == [image_result["downloadId"]]
        assert list(upload_dir.iterdir()) == []

    def test_single_file_field_is_accepted(self, client: TestClient, fake_tools):
        fake_tools.install("pandoc", PANDOC_OK)

        response = client.post(
            "/convert",
            files={"inputFile": ("readme.md", b"# Title\n", "text/markdown")},
            data={"targetFormat": "html"},
        )

        assert response.status_code == 200
        assert response.json()[0]["success"] is True

    def test_missing_files(self, client: TestClient):
        response = client.post("/convert", data={"targetFormat": "pdf"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "MISSING_PARAMETER"
        assert body["details"] == "No files uploaded."

    def test_missing_target_format(self, client: TestClient, upload_dir):
        response = client.post(
            "/convert",
            files=[("files", ("notes.txt", b"text", "text/plain"))],
        )

        assert response.status_code == 400
        assert response.json()["details"] == "No target format specified."
        assert list(upload_dir.iterdir()) == []

    def test_too_many_files(self, client: TestClient, upload_dir):
        files = [("files", (f"f{i}.txt", b"text", "text/plain")) for i in range(6)]

        response = client.post("/convert", files=files, data={"targetFormat": "pdf"})

        assert response.status_code == 413
        assert response.json()["error"] == "TOO_MANY_FILES"
        assert list(upload_dir.iterdir()) == []

    def test_file_too_large(self, make_client, fake_tools, upload_dir):
        fake_tools.install("pandoc", PANDOC_OK)
        client = make_client(max_file_size_bytes=1024)

        response = client.post(
            "/convert",
            files=[
                ("files", ("small.txt", b"ok", "text/plain")),
                ("files", ("big.txt", b"x" * 4096, "text/plain")),
            ],
            data={"targetFormat": "pdf"},
        )

        assert response.status_code == 413
        body = response.json()
        assert body["error"] == "FILE_TOO_LARGE"
        assert "big.txt" in body["details"]
        assert list(upload_dir.iterdir()) == []
        assert fake_tools.all_calls() == {}

    def test_storage_failure_removes_saved_uploads(self, client: TestClient, fake_tools, upload_dir, monkeypatch):
        fake_tools.install("pandoc", PANDOC_OK)
        save_upload = UploadStorage.save_upload
        saved = []

        async def fail_second_save(self, upload, max_bytes):
            if saved:
                raise OSError(28, "No space left on device")
            stored = await save_upload(self, upload, max_bytes)
            saved.append(stored)
            return stored

        monkeypatch.setattr(UploadStorage, "save_upload", fail_second_save)

        response = client.post(
            "/convert",
            files=[
                ("files", ("first.txt", b"one", "text/plain")),
                ("files", ("second.txt", b"two", "text/plain")),
            ],
            data={"targetFormat": "pdf"},
        )

        assert response.status_code == 500
        assert response.json()["error"] == "INTERNAL_ERROR"
        assert len(saved) == 1
        assert not saved[0].path.exists()
        assert list(upload_dir.iterdir()) == []
        assert fake_tools.all_calls() == {}


class TestDownloadEndpoint:

    def _convert(self, client: TestClient, fake_tools, name="notes.txt"):
        fake_tools.install("pandoc", PANDOC_OK)
        response = client.post(
            "/convert",
            files=[("files", (name, b"Some notes\n", "text/plain"))],
            data={"targetFormat": "pdf"},
        )
        return response.json()[0]["downloadId"]

    def test_round_trip_then_sweep(self, client: TestClient, fake_tools, upload_dir, output_dir):
        file_id = self._convert(client, fake_tools)

        response = client.get(f"/download/{file_id}")

        assert response.status_code == 200
        assert response.content == (output_dir / file_id).read_bytes()
        assert 'filename="notes.pdf"' in response.headers["content-disposition"]

        registry = client.app.state.registry
        retention = RetentionScheduler(upload_dir, output_dir, registry=registry, max_age_hours=6)
        retention.sweep(now=time.time() + 7 * 3600)

        assert file_id not in registry
        response = client.get(f"/download/{file_id}")
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_missing_file_evicts_registration(self, client: TestClient, fake_tools, output_dir):
        file_id = self._convert(client, fake_tools)
        (output_dir / file_id).unlink()

        response = client.get(f"/download/{file_id}")

        assert response.status_code == 404
        assert file_id not in client.app.state.registry

    def test_unknown_id(self, client: TestClient):
        response = client.get("/download/0b7f3c1e-2f4a-4c1a-9d4e-1f2a3b4c5d6e.pdf")
        assert response.status_code == 404

    @pytest.mark.parametrize("file_id", [
        "file_name.pdf",
        ".hidden",
        "name with spaces.pdf",
        "semi;colon.pdf",
    ])
    def test_unsafe_ids_are_rejected(self, client: TestClient, file_id):
        response = client.get(f"/download/{file_id}")
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PARAMETER"
