"""
Tests for encoder diagnostic classification.
"""

from mediashift.transcoding.error_classifier import ErrorClassifier, get_error_classifier

STDERR = """ffmpeg version 6.1 Copyright (c) 2000-2023 the FFmpeg developers
[mov,mp4,m4a,3gp,3g2,mj2 @ 0x55d] moov atom not found
frame=    0 fps=0.0 q=0.0 size=       0kB time=N/A
/tmp/mediashift/job/input.mp4: Invalid data found when processing input"""


class TestErrorClassifier:

    def test_specific_pattern_wins(self):
        error, category = ErrorClassifier().classify(STDERR)
        assert category == "input"
        assert error.description == "Input MP4 is truncated or incomplete"

    def test_categories(self):
        classifier = ErrorClassifier()
        assert classifier.classify("Invalid data found when processing input")[1] == "input"
        assert classifier.classify("av_malloc: Cannot allocate memory")[1] == "resource"
        assert classifier.classify("Unknown encoder 'libx265'")[1] == "codec"
        assert classifier.classify("something odd")[1] == "unknown"

    def test_engine_missing_encoder(self):
        error, category = ErrorClassifier().classify("Encoder unavailable in this build: libvorbis")
        assert category == "codec"
        assert error.description == "Encoder not available in this build"

    def test_summarize_skips_progress_lines(self):
        summary = ErrorClassifier().summarize(STDERR)
        assert summary.startswith("Input MP4 is truncated or incomplete: ")
        assert summary.endswith("Invalid data found when processing input")
        assert "frame=" not in summary

    def test_summarize_unmatched_uses_last_line(self):
        assert ErrorClassifier().summarize("line one\nweird failure\n") == "weird failure"

    def test_summarize_empty(self):
        assert ErrorClassifier().summarize("") == "Unknown error"

    def test_summarize_truncates(self):
        summary = ErrorClassifier().summarize("x" * 1000)
        assert len(summary) == 303
        assert summary.endswith("...")

    def test_global_instance(self):
        assert get_error_classifier() is get_error_classifier()
