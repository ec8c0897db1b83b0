"""
Operation registry: accepted inputs, size ceilings and option domains for
every operation kind.
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, Mapping, Optional, Tuple

from ..errors import ConfigurationError, ValidationError
from .constants import (
    MB,
    AUDIO_SAMPLE_RATES,
    AUDIO_TARGETS,
    BOOLEAN_CHOICES,
    CHANNEL_COUNTS,
    FPS_CHOICES,
    FRAME_DELAYS_MS,
    GIF_COLOR_CHOICES,
    GIF_FPS_CHOICES,
    GIF_SCALE_CHOICES,
    MAX_TIME_SECONDS,
    MP3_BITRATES,
    MP3_VBR_BY_BITRATE,
    PCM_CODEC_BY_DEPTH,
    QUALITY_TIERS,
    RASTER_TARGETS,
    VIDEO_AUDIO_ENCODERS,
    VIDEO_BITRATE_CHOICES,
    VIDEO_ENCODERS,
    VIDEO_GIF_DURATIONS,
    VIDEO_GIF_FPS_CHOICES,
    VIDEO_GIF_WIDTHS,
    WAV_SAMPLE_RATES,
)
from .models import OperationKind

logger = logging.getLogger(__name__)

_SECONDS_PATTERN = re.compile(r"^\d{1,6}(\.\d{1,3})?$")

MIME_EXTENSIONS: Dict[str, str] = {
    "video/mp4": "mp4",
    "video/avi": "avi",
    "video/x-msvideo": "avi",
    "video/mov": "mov",
    "video/quicktime": "mov",
    "video/x-quicktime": "mov",
    "video/webm": "webm",
    "video/mkv": "mkv",
    "video/x-matroska": "mkv",
    "video/flv": "flv",
    "video/x-flv": "flv",
    "video/wmv": "wmv",
    "video/x-ms-wmv": "wmv",
    "video/3gp": "3gp",
    "video/3gpp": "3gp",
    "video/x-m4v": "m4v",
    "video/ogg": "ogv",
    "video/mp2t": "ts",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/ogg": "ogg",
    "audio/flac": "flac",
    "audio/x-flac": "flac",
    "audio/aac": "aac",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/x-ms-wma": "wma",
    "image/gif": "gif",
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
}

# Spellings that name the same container
EXTENSION_ALIASES: Dict[str, str] = {
    "jpeg": "jpg",
    "qt": "mov",
    "tif": "tiff",
}


@dataclass(frozen=True)
class OptionSpec:
    """Domain of one caller-supplied option."""
    name: str
    choices: Tuple[str, ...] = ()
    default: Optional[str] = None
    required: bool = False
    seconds: bool = False  # free decimal seconds instead of an enumerated choice
    positive: bool = False
    description: str = ""

    def describe(self) -> str:
        if self.seconds:
            bound = "> 0" if self.positive else ">= 0"
            return f"seconds ({bound}, max {MAX_TIME_SECONDS})"
        return " | ".join(self.choices)

    def validate(self, raw: Optional[str]) -> Optional[str]:
        """Return the canonical value, the default, or raise ValidationError."""
        if raw is None or str(raw).strip() == "":
            if self.required:
                raise ValidationError(f"Option '{self.name}' is required")
            return self.default

        value = str(raw).strip()
        if self.seconds:
            return self._validate_seconds(value)

        value = value.lower()
        if value not in self.choices:
            raise ValidationError(
                f"Invalid value for '{self.name}': {value!r}. "
                f"Allowed: {', '.join(self.choices)}"
            )
        return value

    def _validate_seconds(self, value: str) -> Optional[str]:
        if not _SECONDS_PATTERN.match(value):
            raise ValidationError(f"Option '{self.name}' must be a number of seconds, got {value!r}")
        try:
            number = Decimal(value)
        except InvalidOperation:
            raise ValidationError(f"Option '{self.name}' must be a number of seconds, got {value!r}")
        if number > MAX_TIME_SECONDS:
            raise ValidationError(f"Option '{self.name}' exceeds {MAX_TIME_SECONDS} seconds")
        if self.positive and number <= 0:
            raise ValidationError(f"Option '{self.name}' must be positive")
        if number == 0 and not self.positive:
            return self.default
        return format(number.normalize(), "f")


@dataclass(frozen=True)
class OperationSpec:
    """Static description of one operation kind."""
    kind: OperationKind
    description: str
    extensions: Tuple[str, ...]
    max_size_mb: int
    options: Tuple[OptionSpec, ...] = ()
    min_files: int = 1
    max_files: int = 1
    uniform_extension: bool = False
    extra: Dict[str, str] = field(default_factory=dict)

    def option(self, name: str) -> OptionSpec:
        for spec in self.options:
            if spec.name == name:
                return spec
        raise ConfigurationError(f"{self.kind.value} has no option {name!r}")

    def resolve_options(self, raw: Mapping[str, str]) -> Dict[str, Optional[str]]:
        """Validate every known option; unknown keys are ignored."""
        known = {spec.name for spec in self.options}
        ignored = sorted(k for k in raw if k not in known)
        if ignored:
            logger.debug(f"[Options] Ignoring unknown options for {self.kind.value}: {ignored}")
        return {spec.name: spec.validate(raw.get(spec.name)) for spec in self.options}

    def to_dict(self) -> Dict[str, object]:
        return {
            "operation": self.kind.value,
            "description": self.description,
            "supported_formats": list(self.extensions),
            "max_size_mb": self.max_size_mb,
            "files": {"min": self.min_files, "max": self.max_files},
            "parameters": {
                spec.name: {
                    "allowed": spec.describe(),
                    "default": spec.default,
                    "required": spec.required,
                }
                for spec in self.options
            },
        }


def normalize_extension(extension: str) -> str:
    extension = extension.lower().lstrip(".")
    return EXTENSION_ALIASES.get(extension, extension)


def source_format(filename: str, content_type: str, spec: OperationSpec) -> Optional[str]:
    """
    Resolve the container format of an upload against what `spec` accepts.

    The filename extension wins; the declared MIME type is only consulted when
    the extension is missing or not accepted. Returns None when neither fits.
    """
    extension = normalize_extension(filename.rsplit(".", 1)[-1]) if "." in filename else ""
    if extension and extension in spec.extensions:
        return extension

    mime = (content_type or "").split(";")[0].strip().lower()
    from_mime = MIME_EXTENSIONS.get(mime)
    if from_mime and from_mime in spec.extensions:
        return from_mime

    return None


_QUALITY = OptionSpec("quality", QUALITY_TIERS, default="medium")
_RESOLUTION = OptionSpec("resolution", ("original", "720p", "480p", "360p"), default="original")
_RESOLUTION_FULL = OptionSpec("resolution", ("original", "1080p", "720p", "480p", "360p"), default="original")
_FPS = OptionSpec("fps", ("original",) + FPS_CHOICES, default="original")
_VIDEO_BITRATE = OptionSpec("bitrate", ("auto",) + VIDEO_BITRATE_CHOICES, default="auto")
_NORMALIZE = OptionSpec("normalize", BOOLEAN_CHOICES, default="false")
_LOOP = OptionSpec("loop", BOOLEAN_CHOICES, default="true")

_VIDEO_INPUTS = ("mp4", "avi", "mov", "webm", "mkv", "flv", "wmv", "3gp")
_AUDIO_INPUTS = tuple(AUDIO_TARGETS)
_FRAME_INPUTS = ("png", "jpg", "webp", "bmp")

OPERATIONS: Dict[OperationKind, OperationSpec] = {
    spec.kind: spec for spec in (
        OperationSpec(
            OperationKind.COMPRESS_VIDEO,
            "Compress a video to H.264/AAC MP4",
            _VIDEO_INPUTS,
            max_size_mb=500,
            options=(_QUALITY, _RESOLUTION, _FPS, _VIDEO_BITRATE),
        ),
        OperationSpec(
            OperationKind.CONVERT_VIDEO,
            "Convert a video (MOV, AVI, MKV, ...) to MP4",
            _VIDEO_INPUTS + ("m4v",),
            max_size_mb=500,
            options=(
                OptionSpec("video_codec", tuple(VIDEO_ENCODERS), default="h264"),
                _QUALITY,
                _RESOLUTION_FULL,
                _FPS,
                _VIDEO_BITRATE,
                OptionSpec("audio_codec", tuple(VIDEO_AUDIO_ENCODERS), default="aac"),
            ),
        ),
        OperationSpec(
            OperationKind.COMPRESS_AUDIO,
            "Compress an MP3 with LAME",
            ("mp3",),
            max_size_mb=100,
            options=(
                OptionSpec("encoding_mode", ("cbr", "vbr", "abr"), default="cbr"),
                OptionSpec("bitrate", tuple(b for b in MP3_BITRATES if b != "160"), default="128"),
                _QUALITY,
            ),
        ),
        OperationSpec(
            OperationKind.COMPRESS_WAV,
            "Downsample a WAV or re-encode it as MP3",
            ("wav",),
            max_size_mb=200,
            options=(
                OptionSpec("compression_type", ("downsample", "convert"), default="downsample"),
                OptionSpec("bit_depth", tuple(PCM_CODEC_BY_DEPTH), default="16"),
                OptionSpec("sample_rate", WAV_SAMPLE_RATES, default="44100"),
                OptionSpec("mp3_bitrate", tuple(MP3_VBR_BY_BITRATE), default="128"),
                OptionSpec("mp3_encoding_mode", ("cbr", "vbr", "abr"), default="cbr"),
            ),
        ),
        OperationSpec(
            OperationKind.COMPRESS_GIF,
            "Shrink an animated GIF (frame rate, scale, palette size)",
            ("gif",),
            max_size_mb=50,
            options=(
                OptionSpec("fps", GIF_FPS_CHOICES, default="10"),
                OptionSpec("scale", GIF_SCALE_CHOICES, default="100"),
                OptionSpec("colors", GIF_COLOR_CHOICES, default="128"),
            ),
        ),
        OperationSpec(
            OperationKind.CONVERT_AUDIO,
            "Convert between audio formats",
            _AUDIO_INPUTS,
            max_size_mb=100,
            options=(
                OptionSpec("target_format", tuple(AUDIO_TARGETS), required=True),
                OptionSpec("quality", QUALITY_TIERS, default="high"),
                OptionSpec("sample_rate", ("original",) + AUDIO_SAMPLE_RATES, default="original"),
                OptionSpec("channels", ("original",) + tuple(CHANNEL_COUNTS), default="original"),
                _NORMALIZE,
            ),
        ),
        OperationSpec(
            OperationKind.EXTRACT_AUDIO,
            "Extract the audio track of a video as MP3",
            _VIDEO_INPUTS + ("m4v", "ogv", "mts", "m2ts", "ts"),
            max_size_mb=500,
            options=(
                OptionSpec("bitrate", MP3_BITRATES, default="192"),
                OptionSpec("start_time", seconds=True),
                OptionSpec("duration", seconds=True, positive=True),
                _NORMALIZE,
            ),
        ),
        OperationSpec(
            OperationKind.VIDEO_TO_GIF,
            "Turn the start of a video into an animated GIF",
            ("mp4", "webm", "mov", "avi", "mkv"),
            max_size_mb=200,
            options=(
                OptionSpec("fps", VIDEO_GIF_FPS_CHOICES, default="10"),
                OptionSpec("width", VIDEO_GIF_WIDTHS, default="480"),
                OptionSpec("max_duration", VIDEO_GIF_DURATIONS, default="5"),
                _LOOP,
            ),
        ),
        OperationSpec(
            OperationKind.GIF_TO_VIDEO,
            "Convert an animated GIF to MP4",
            ("gif",),
            max_size_mb=50,
        ),
        OperationSpec(
            OperationKind.IMAGE_SEQUENCE_TO_GIF,
            "Assemble still images into an animated GIF",
            _FRAME_INPUTS,
            max_size_mb=50,
            options=(
                OptionSpec("delay", FRAME_DELAYS_MS, default="500"),
                _LOOP,
            ),
            min_files=2,
            max_files=100,
            uniform_extension=True,
        ),
        OperationSpec(
            OperationKind.RASTER_CONVERT,
            "Convert a still image between raster formats",
            ("png", "jpg", "webp", "bmp", "gif", "tiff"),
            max_size_mb=25,
            options=(
                OptionSpec("target_format", tuple(RASTER_TARGETS), required=True),
                _QUALITY,
                _RESOLUTION_FULL,
            ),
        ),
    )
}


def get_operation(operation: str) -> OperationSpec:
    """Look up an operation by kind or string value."""
    try:
        kind = OperationKind(operation)
    except ValueError:
        raise ConfigurationError(f"Unknown operation kind: {operation!r}")
    spec = OPERATIONS.get(kind)
    if spec is None:
        raise ConfigurationError(f"No registry entry for operation {kind.value}")
    return spec


def size_ceiling_bytes(spec: OperationSpec, overrides: Optional[Mapping[str, int]] = None) -> int:
    if overrides and spec.kind.value in overrides:
        return int(overrides[spec.kind.value]) * MB
    return spec.max_size_mb * MB
