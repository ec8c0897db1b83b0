"""
Tests for output signature checks and result packaging.
"""

import pytest

from mediashift.transcoding import CommandBuilder, Success, pack, validate_output
from mediashift.transcoding.packager import sanitize_stem

from conftest import GIF_BYTES, MP3_BYTES, MP4_BYTES, PNG_BYTES


class TestValidateOutput:

    @pytest.mark.parametrize("data,extension", [
        (MP4_BYTES, "mp4"),
        (GIF_BYTES, "gif"),
        (MP3_BYTES, "mp3"),
        (b"\xff\xfb\x90\x00" + b"\x00" * 16, "mp3"),
        (PNG_BYTES, "png"),
        (b"\xff\xd8\xff\xe0" + b"\x00" * 16, "jpg"),
        (b"RIFF\x24\x00\x00\x00WAVEfmt ", "wav"),
        (b"RIFF\x24\x00\x00\x00WEBPVP8 ", "webp"),
        (b"OggS\x00\x02", "ogg"),
        (b"fLaC\x00\x00", "flac"),
        (b"BM\x36\x00", "bmp"),
    ])
    def test_accepts_expected_container(self, data, extension):
        assert validate_output(data, extension) == (True, "")

    def test_rejects_empty(self):
        valid, reason = validate_output(b"", "mp4")
        assert not valid
        assert "empty" in reason

    def test_rejects_none(self):
        assert validate_output(None, "gif")[0] is False

    def test_rejects_mismatched_container(self):
        valid, reason = validate_output(GIF_BYTES, "mp4")
        assert not valid
        assert "mp4" in reason

    def test_riff_form_matters(self):
        assert not validate_output(b"RIFF\x24\x00\x00\x00WAVEfmt ", "webp")[0]

    def test_unknown_extension_needs_only_bytes(self):
        assert validate_output(b"anything", "xyz") == (True, "")


class TestPackager:

    def test_pack_uses_plan_metadata(self):
        plan = CommandBuilder().build("compress-wav", {"compression_type": "convert"})
        result = pack(Success(MP3_BYTES), "field recording.wav", plan, original_size=5000)

        assert result.filename == "field recording.mp3"
        assert result.mime_type == "audio/mpeg"
        assert result.original_size == 5000
        assert result.output_size == len(MP3_BYTES)
        assert result.data == MP3_BYTES

    def test_size_change_percent(self):
        plan = CommandBuilder().build("gif-to-video", {})
        result = pack(Success(b"x" * 25), "a.gif", plan, original_size=100)
        assert result.size_change_percent == -75.0

    @pytest.mark.parametrize("filename,stem", [
        ("clip.mp4", "clip"),
        ("archive.tar.gz", "archive.tar"),
        ("../../etc/passwd", "passwd"),
        ("C:\\Users\\me\\video.mov", "video"),
        ('evil"; name.mp4', "evil_ name"),
        ("", "output"),
        (".mp4", "output"),
        ("noext", "noext"),
    ])
    def test_sanitize_stem(self, filename, stem):
        assert sanitize_stem(filename) == stem

    def test_sanitize_stem_truncates(self):
        assert len(sanitize_stem("a" * 500 + ".mp4")) == 120
