"""
Tests for the operation registry and option domains.
"""

import pytest

from mediashift.errors import ConfigurationError, ValidationError
from mediashift.transcoding import OPERATIONS, OptionSpec, get_operation
from mediashift.transcoding.constants import MB
from mediashift.transcoding.operations import normalize_extension, size_ceiling_bytes, source_format


class TestRegistry:

    def test_every_kind_registered(self):
        from mediashift.transcoding import OperationKind
        assert set(OPERATIONS) == set(OperationKind)

    def test_lookup_by_string(self):
        assert get_operation("compress-video").max_size_mb == 500

    def test_unknown_operation(self):
        with pytest.raises(ConfigurationError):
            get_operation("nope")

    def test_size_ceilings(self):
        assert get_operation("compress-audio").max_size_mb == 100
        assert get_operation("compress-wav").max_size_mb == 200
        assert get_operation("compress-gif").max_size_mb == 50
        assert get_operation("raster-convert").max_size_mb == 25

    def test_size_override(self):
        spec = get_operation("compress-gif")
        assert size_ceiling_bytes(spec) == 50 * MB
        assert size_ceiling_bytes(spec, {"compress-gif": 10}) == 10 * MB
        assert size_ceiling_bytes(spec, {"compress-video": 10}) == 50 * MB

    def test_image_sequence_file_limits(self):
        spec = get_operation("image-sequence-to-gif")
        assert (spec.min_files, spec.max_files) == (2, 100)
        assert spec.uniform_extension

    def test_to_dict_describes_options(self):
        info = get_operation("convert-audio").to_dict()
        assert info["operation"] == "convert-audio"
        assert info["parameters"]["target_format"]["required"] is True
        assert "mp3" in info["parameters"]["target_format"]["allowed"]
        assert info["files"] == {"min": 1, "max": 1}


class TestOptionSpec:

    def test_default_when_missing_or_blank(self):
        spec = OptionSpec("quality", ("high", "low"), default="low")
        assert spec.validate(None) == "low"
        assert spec.validate("  ") == "low"

    def test_required(self):
        spec = OptionSpec("target_format", ("mp3",), required=True)
        with pytest.raises(ValidationError):
            spec.validate(None)

    def test_normalises_case_and_whitespace(self):
        spec = OptionSpec("quality", ("high", "low"), default="low")
        assert spec.validate(" High ") == "high"

    def test_rejects_outside_domain(self):
        spec = OptionSpec("quality", ("high", "low"), default="low")
        with pytest.raises(ValidationError):
            spec.validate("; rm -rf /")

    def test_seconds_canonical_form(self):
        spec = OptionSpec("start_time", seconds=True)
        assert spec.validate("90") == "90"
        assert spec.validate("1.500") == "1.5"
        assert spec.validate("0") is None

    def test_positive_seconds(self):
        spec = OptionSpec("duration", seconds=True, positive=True)
        assert spec.validate("2") == "2"
        with pytest.raises(ValidationError):
            spec.validate("0.0")


class TestSourceFormat:

    def test_extension_wins(self):
        spec = get_operation("compress-video")
        assert source_format("clip.MOV", "video/mp4", spec) == "mov"

    def test_mime_fallback(self):
        spec = get_operation("compress-video")
        assert source_format("upload", "video/quicktime", spec) == "mov"

    def test_alias(self):
        assert normalize_extension(".JPEG") == "jpg"
        assert source_format("photo.jpeg", "", get_operation("raster-convert")) == "jpg"

    def test_mime_parameters_ignored(self):
        spec = get_operation("compress-audio")
        assert source_format("track", "audio/mpeg; charset=binary", spec) == "mp3"

    def test_unsupported(self):
        spec = get_operation("compress-audio")
        assert source_format("song.flac", "audio/flac", spec) is None
