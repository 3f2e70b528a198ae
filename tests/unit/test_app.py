"""
Unit tests for application health and listing endpoints.
"""

from fastapi.testclient import TestClient


class TestHealthEndpoints:
    """Test cases for health check endpoints."""

    def test_ping_endpoint(self, client: TestClient):
        """Test the general ping endpoint."""
        response = client.get("/ping")
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["data"] == "PONG!"

    def test_ping_endpoint_content_type(self, client: TestClient):
        """Test that ping endpoint returns correct content type."""
        response = client.get("/ping")
        assert response.headers["content-type"] == "application/json"

    def test_root_liveness_text(self, client: TestClient):
        response = client.get("/")
        assert response.status_code == 200
        assert response.text == "File Converter Backend is running!"


class TestLifespan:
    """The lifespan wires shared services onto app.state."""

    def test_state_is_populated(self, client: TestClient):
        state = client.app.state
        assert state.registry is not None
        assert state.job_runner is not None
        assert state.upload_storage is not None
        assert state.retention is None

    def test_directories_are_created(self, make_client, tmp_path):
        upload_dir = tmp_path / "fresh" / "uploads"
        output_dir = tmp_path / "fresh" / "converted"
        make_client(upload_dir=upload_dir, output_dir=output_dir)
        assert upload_dir.is_dir()
        assert output_dir.is_dir()

    def test_retention_scheduler_started_when_enabled(self, make_client):
        client = make_client(retention_enabled=True)
        retention = client.app.state.retention
        assert retention is not None
        assert retention.running


class TestFormatsEndpoint:

    def test_lists_kinds_and_targets(self, client: TestClient):
        response = client.get("/formats")
        assert response.status_code == 200
        data = response.json()["data"]
        assert "pdf" in data["text/plain"]
        assert data["spreadsheet"] == ["pdf"]
        assert "tar.gz" in data["archive-create"]


class TestCors:
    """Cross-origin browser clients may call the API."""

    PREFLIGHT = {
        "Origin": "https://app.example.com",
        "Access-Control-Request-Method": "POST",
    }

    def test_preflight_allows_any_origin_by_default(self, client: TestClient):
        response = client.options("/convert", headers=self.PREFLIGHT)
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert "POST" in response.headers["access-control-allow-methods"]

    def test_configured_origin_is_echoed(self, make_client):
        client = make_client(cors_origins=("https://app.example.com",))
        response = client.options("/convert", headers=self.PREFLIGHT)
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "https://app.example.com"

    def test_unlisted_origin_is_refused(self, make_client):
        client = make_client(cors_origins=("https://app.example.com",))
        response = client.options(
            "/convert",
            headers={"Origin": "https://evil.example.org", "Access-Control-Request-Method": "POST"},
        )
        assert response.status_code == 400
        assert "access-control-allow-origin" not in response.headers

    def test_simple_request_exposes_download_name(self, client: TestClient):
        response = client.get("/ping", headers={"Origin": "https://app.example.com"})
        assert response.headers["access-control-allow-origin"] == "*"
        assert "Content-Disposition" in response.headers["access-control-expose-headers"]
