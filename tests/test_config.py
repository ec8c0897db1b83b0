"""
Tests for configuration loading and logging setup.
"""

import json
import logging

import pytest

from mediashift.config import LoggingConfig, MediaShiftConfig, get_config, load_config, set_config
from mediashift.logging_config import JSONFormatter, configure_logging


class TestConfig:

    def test_defaults(self):
        config = MediaShiftConfig()
        assert config.server.port == 8080
        assert config.transcoding.ffmpeg_path == "auto"
        assert config.transcoding.max_concurrent_jobs == 4
        assert config.transcoding.process_timeout == 600
        assert config.transcoding.enable_embedded_engine is True
        assert config.security.allowed_origins == ["*"]

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "mediashift.yaml"
        path.write_text(
            "server:\n"
            "  port: 9000\n"
            "transcoding:\n"
            "  scratch_root: /srv/scratch\n"
            "  enable_embedded_engine: false\n"
            "limits:\n"
            "  max_upload_mb:\n"
            "    compress-video: 1000\n"
        )
        config = load_config(str(path))

        assert config.server.port == 9000
        assert config.transcoding.scratch_root == "/srv/scratch"
        assert config.transcoding.enable_embedded_engine is False
        assert config.limits.max_upload_mb == {"compress-video": 1000}

    def test_found_in_working_directory(self, tmp_path, monkeypatch):
        (tmp_path / "mediashift.yaml").write_text("server:\n  port: 7070\n")
        monkeypatch.chdir(tmp_path)
        assert load_config().server.port == 7070

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "mediashift.yaml"
        path.write_text("")
        assert load_config(str(path)).server.port == 8080

    def test_environment_overrides(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("MEDIASHIFT_TRANSCODING__SCRATCH_ROOT", "/var/tmp/ms")
        monkeypatch.setenv("MEDIASHIFT_TRANSCODING__FFMPEG_PATH", "/opt/bin/ffmpeg")

        config = load_config()

        assert config.transcoding.scratch_root == "/var/tmp/ms"
        assert config.transcoding.ffmpeg_path == "/opt/bin/ffmpeg"

    def test_global_accessors(self):
        config = MediaShiftConfig()
        config.server.port = 1234
        set_config(config)
        try:
            assert get_config() is config
        finally:
            set_config(None)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestLogging:

    def test_json_formatter(self):
        record = logging.LogRecord("mediashift.jobs", logging.INFO, __file__, 1, "job %s done", ("abc",), None)
        record.job_id = "abc"

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "mediashift.jobs"
        assert entry["message"] == "job abc done"
        assert entry["context"] == {"job_id": "abc"}

    def test_configure_text(self, restore_root_logger):
        configure_logging(LoggingConfig(level="warning"))
        assert restore_root_logger.level == logging.WARNING
        assert len(restore_root_logger.handlers) == 1

    def test_configure_json_with_file(self, restore_root_logger, tmp_path):
        log_file = tmp_path / "logs" / "mediashift.log"
        configure_logging(LoggingConfig(level="debug", format="json", file=str(log_file)))

        logging.getLogger("mediashift.test").debug("hello")
        for handler in restore_root_logger.handlers:
            handler.flush()

        line = log_file.read_text().strip().splitlines()[-1]
        assert json.loads(line)["message"] == "hello"
