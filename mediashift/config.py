"""
Configuration management for MediaShift
"""

import tempfile
import yaml
from pathlib import Path
from typing import Optional, List, Dict
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080


class TranscodingConfig(BaseModel):
    ffmpeg_path: str = "auto"
    scratch_root: str = str(Path(tempfile.gettempdir()) / "mediashift")
    max_concurrent_jobs: int = 4
    process_timeout: int = 600  # Hard bound on one ffmpeg run, seconds
    stall_timeout: int = 120  # Seconds without progress output before ffmpeg is considered stalled
    enable_embedded_engine: bool = True
    embedded_engine_threads: int = 2
    orphan_max_age_hours: int = 6


class LimitsConfig(BaseModel):
    # Per-operation overrides of the built-in size ceilings, in megabytes
    max_upload_mb: Dict[str, int] = Field(default_factory=dict)


class SecurityConfig(BaseModel):
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "text"
    file: Optional[str] = None
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 3


class MediaShiftConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MEDIASHIFT_",
        env_nested_delimiter="__",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    transcoding: TranscodingConfig = Field(default_factory=TranscodingConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def find_config_file() -> Optional[Path]:
    """Find the configuration file in standard locations."""
    search_paths = [
        Path.cwd() / "mediashift.yaml",
        Path.cwd() / "mediashift.yml",
        Path.cwd() / "config" / "mediashift.yaml",
        Path.home() / ".config" / "mediashift" / "mediashift.yaml",
        Path("/etc/mediashift/mediashift.yaml"),
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config(config_path: Optional[str] = None) -> MediaShiftConfig:
    """Load configuration from YAML file, environment, or defaults."""
    config_file = Path(config_path) if config_path else find_config_file()

    if config_file and config_file.exists():
        with open(config_file, "r") as f:
            yaml_data = yaml.safe_load(f) or {}
        return MediaShiftConfig(**yaml_data)

    return MediaShiftConfig()


# Global config instance
_config: Optional[MediaShiftConfig] = None


def get_config() -> MediaShiftConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: MediaShiftConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
