"""
Tests for the HTTP API.
"""

from typing import Generator

import pytest
from fastapi.testclient import TestClient

from mediashift import __version__
from mediashift.api import create_app
from mediashift.jobs import JobManager, get_job_manager
from mediashift.transcoding import LocalProcessBackend, TranscodeController

from conftest import GIF_BYTES, MP4_BYTES, CountingResourceManager, embedded_ok, local_fail, local_ok


def client_for(test_config, *backends) -> TestClient:
    resources = CountingResourceManager(test_config.transcoding.scratch_root)
    manager = JobManager(test_config, TranscodeController(resources, list(backends)))
    return TestClient(create_app(job_manager=manager))


@pytest.fixture
def api_client(test_config) -> Generator[TestClient, None, None]:
    """Client whose conversions always succeed."""
    with client_for(test_config, local_ok()) as client:
        yield client


class TestServiceEndpoints:

    def test_health(self, api_client):
        response = api_client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert data["current_jobs"] == 0

    def test_stats(self, api_client):
        api_client.post("/api/compress-video", files={"file": ("a.mp4", b"data", "video/mp4")})
        data = api_client.get("/api/stats").json()
        assert data["total_jobs_processed"] == 1
        assert data["successful_jobs"] == 1
        assert data["operations"] == {"compress-video": 1}

    def test_capabilities(self, test_config):
        with client_for(test_config, LocalProcessBackend(ffmpeg_path="/opt/ffmpeg")) as client:
            data = client.get("/api/capabilities").json()
        assert data["ffmpeg_path"] == "/opt/ffmpeg"
        assert data["embedded_engine"] == {"enabled": False, "loaded": False}
        assert "compress-video" in data["operations"]

    def test_lifespan_installs_job_manager(self, test_config):
        client = client_for(test_config, local_ok())
        with client:
            assert get_job_manager().controller.backends[0].kind.value == "local_process"


class TestDescribe:

    def test_list_operations(self, api_client):
        operations = api_client.get("/api/operations").json()["operations"]
        assert len(operations) == 11
        assert {op["operation"] for op in operations} >= {"compress-video", "raster-convert"}

    def test_describe_operation(self, api_client):
        data = api_client.get("/api/compress-audio").json()
        assert data["supported_formats"] == ["mp3"]
        assert data["max_size_mb"] == 100
        assert data["parameters"]["encoding_mode"]["default"] == "cbr"

    def test_unknown_operation(self, api_client):
        assert api_client.get("/api/compress-hologram").status_code == 404
        response = api_client.post(
            "/api/compress-hologram", files={"file": ("a.mp4", b"data", "video/mp4")}
        )
        assert response.status_code == 404


class TestConvert:

    def test_success_headers(self, api_client):
        response = api_client.post(
            "/api/compress-video",
            files={"file": ("holiday clip.mp4", b"source-bytes", "video/mp4")},
            data={"quality": "high", "resolution": "720p"},
        )

        assert response.status_code == 200
        assert response.content == MP4_BYTES
        assert response.headers["content-type"] == "video/mp4"
        assert response.headers["content-disposition"] == 'attachment; filename="holiday clip.mp4"'
        assert response.headers["x-original-size"] == str(len(b"source-bytes"))
        assert response.headers["x-output-size"] == str(len(MP4_BYTES))

        job_id = response.headers["x-job-id"]
        status = api_client.get(f"/api/jobs/{job_id}").json()
        assert status["status"] == "ready"
        assert status["operation"] == "compress-video"
        assert status["progress"] == 100.0

    def test_unsupported_file(self, api_client):
        response = api_client.post(
            "/api/compress-video", files={"file": ("notes.txt", b"hello", "text/plain")}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert "Unsupported file type" in response.json()["detail"]

    def test_invalid_option(self, api_client):
        response = api_client.post(
            "/api/compress-video",
            files={"file": ("a.mp4", b"data", "video/mp4")},
            data={"resolution": "8k"},
        )
        assert response.status_code == 400

    def test_missing_file(self, api_client):
        response = api_client.post("/api/compress-video", data={"quality": "high"})
        assert response.status_code == 400
        assert response.json() == {"error": "validation_error", "detail": "No file provided"}

    def test_encoding_failure(self, test_config):
        with client_for(test_config, local_fail()) as client:
            response = client.post(
                "/api/compress-video", files={"file": ("a.mp4", b"data", "video/mp4")}
            )
        assert response.status_code == 422
        assert response.json()["error"] == "encoding_error"
        assert response.json()["detail"].startswith("Conversion failed")

    def test_fallback_is_invisible(self, test_config):
        with client_for(test_config, local_fail(), embedded_ok()) as client:
            response = client.post(
                "/api/compress-video", files={"file": ("a.mp4", b"data", "video/mp4")}
            )
        assert response.status_code == 200
        assert response.content == MP4_BYTES

    def test_image_sequence(self, test_config):
        with client_for(test_config, local_ok(data=GIF_BYTES)) as client:
            response = client.post(
                "/api/image-sequence-to-gif",
                files=[
                    ("files", ("one.png", b"\x89PNG-1", "image/png")),
                    ("files", ("two.png", b"\x89PNG-2", "image/png")),
                ],
                data={"delay": "200"},
            )
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/gif"
        assert 'filename="one.gif"' in response.headers["content-disposition"]

    def test_unknown_job(self, api_client):
        assert api_client.get("/api/jobs/nope").status_code == 404


class TestWebSocket:

    def test_ping_pong(self, api_client):
        with api_client.websocket_connect("/ws/progress") as ws:
            ws.send_text('{"type": "ping"}')
            assert ws.receive_json() == {"type": "pong"}
