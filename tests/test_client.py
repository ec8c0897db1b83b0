"""
Tests for the HTTP client, run in-process against the ASGI app.
"""

import httpx
import pytest

from mediashift.api import create_app
from mediashift.client import MediaShiftClient, MediaShiftClientError, _filename_from_disposition
from mediashift.jobs import JobManager, set_job_manager
from mediashift.transcoding import TranscodeController

from conftest import MP3_BYTES, CountingResourceManager, local_fail, local_ok


@pytest.fixture
def make_client(test_config):
    def factory(*backends) -> MediaShiftClient:
        resources = CountingResourceManager(test_config.transcoding.scratch_root)
        set_job_manager(JobManager(test_config, TranscodeController(resources, list(backends))))
        transport = httpx.ASGITransport(app=create_app())
        return MediaShiftClient("http://mediashift.test", transport=transport)

    yield factory
    set_job_manager(None)


class TestMediaShiftClient:

    @pytest.mark.asyncio
    async def test_convert(self, make_client):
        client = make_client(local_ok(data=MP3_BYTES))

        result = await client.convert(
            "extract-audio",
            files=[("talk.mkv", b"matroska-bytes", "video/x-matroska")],
            options={"bitrate": "128"},
        )

        assert result.data == MP3_BYTES
        assert result.filename == "talk.mp3"
        assert result.mime_type == "audio/mpeg"
        assert result.original_size == len(b"matroska-bytes")
        assert result.output_size == len(MP3_BYTES)
        assert result.job_id

        status = await client.get_job_status(result.job_id)
        assert status["status"] == "ready"

    @pytest.mark.asyncio
    async def test_error_body_raised(self, make_client):
        client = make_client(local_fail())

        with pytest.raises(MediaShiftClientError) as exc_info:
            await client.convert("compress-video", files=[("a.mp4", b"data", "video/mp4")])

        assert exc_info.value.status_code == 422
        assert exc_info.value.kind == "encoding_error"

    @pytest.mark.asyncio
    async def test_describe_and_list(self, make_client):
        client = make_client(local_ok())
        assert (await client.describe("gif-to-video"))["supported_formats"] == ["gif"]
        assert len(await client.list_operations()) == 11
        assert await client.health_check()

    @pytest.mark.asyncio
    async def test_unknown_job(self, make_client):
        client = make_client(local_ok())
        assert await client.get_job_status("missing") is None

    @pytest.mark.asyncio
    async def test_requires_files(self):
        with pytest.raises(ValueError):
            await MediaShiftClient().convert("compress-video", files=[])

    @pytest.mark.asyncio
    async def test_health_check_unreachable(self):
        client = MediaShiftClient("http://127.0.0.1:9")
        assert await client.health_check() is False


def test_filename_from_disposition():
    assert _filename_from_disposition('attachment; filename="a b.mp4"') == "a b.mp4"
    assert _filename_from_disposition("attachment") == "output"
