"""
FFmpeg error classification.

Turns raw encoder diagnostics (ffmpeg stderr or libav exception text) into a
short, human-readable reason that can be shown to a caller.
"""

import logging
from dataclasses import dataclass
from typing import List, Tuple, Optional

logger = logging.getLogger(__name__)


@dataclass
class FFmpegError:
    """Represents a classified FFmpeg error."""
    pattern: str
    category: str  # 'input', 'codec', 'resource', 'environment'
    description: str


# Checked in order; more specific patterns first
FFMPEG_ERROR_MAP: List[FFmpegError] = [
    # === Broken or unsupported input ===
    FFmpegError("moov atom not found", "input", "Input MP4 is truncated or incomplete"),
    FFmpegError("invalid data found when processing input", "input", "Input file is corrupt or not a media file"),
    FFmpegError("could not find codec parameters", "input", "Input stream could not be analysed"),
    FFmpegError("does not contain any stream", "input", "Input has no usable streams"),
    FFmpegError("output file #0 does not contain any stream", "input", "Input has no stream of the requested type"),
    FFmpegError("stream map", "input", "Requested stream not present in input"),
    FFmpegError("matches no streams", "input", "Requested stream not present in input"),
    FFmpegError("end of file", "input", "Unexpected end of input"),
    FFmpegError("invalid argument", "input", "Invalid argument for this input"),
    FFmpegError("invaliddataerror", "input", "Input file is corrupt or not a media file"),
    FFmpegError("invalid data", "input", "Invalid input data"),

    # === Codec / filter availability ===
    FFmpegError("unknown encoder", "codec", "Encoder not available in this build"),
    FFmpegError("encoder not found", "codec", "Encoder not available in this build"),
    FFmpegError("encoder unavailable", "codec", "Encoder not available in this build"),
    FFmpegError("decoder not found", "codec", "Decoder not available in this build"),
    FFmpegError("codec not found", "codec", "Codec not available in this build"),
    FFmpegError("unknown codec", "codec", "Codec not available in this build"),
    FFmpegError("no such filter", "codec", "Filter not available in this build"),
    FFmpegError("filter not found", "codec", "Filter not available in this build"),
    FFmpegError("incompatible pixel format", "codec", "Incompatible pixel format for encoder"),
    FFmpegError("sample format", "codec", "Incompatible sample format for encoder"),
    FFmpegError("error while opening encoder", "codec", "Encoder rejected the parameters"),
    FFmpegError("error initializing output stream", "codec", "Encoder rejected the parameters"),

    # === Resource exhaustion ===
    FFmpegError("out of memory", "resource", "Out of memory"),
    FFmpegError("cannot allocate", "resource", "Memory allocation failed"),
    FFmpegError("too many open files", "resource", "File descriptor limit"),
    FFmpegError("no space left", "resource", "No disk space"),
    FFmpegError("disk quota", "resource", "Disk quota exceeded"),

    # === Environment ===
    FFmpegError("no such file", "environment", "File not found"),
    FFmpegError("permission denied", "environment", "Permission denied"),
]

_MAX_DETAIL = 300


class ErrorClassifier:
    """Classifies FFmpeg errors into categories with readable descriptions."""

    def __init__(self, error_map: Optional[List[FFmpegError]] = None):
        self.error_map = error_map or FFMPEG_ERROR_MAP

    def classify(self, error_msg: str) -> Tuple[Optional[FFmpegError], str]:
        """
        Classify FFmpeg error using the error map.

        Returns:
            Tuple of (matched_error, category). Category is 'unknown' if no match.
        """
        error_lower = error_msg.lower()

        for error in self.error_map:
            if error.pattern in error_lower:
                return error, error.category

        return None, "unknown"

    def summarize(self, error_output: str) -> str:
        """
        One-line reason for a failed run: the matched description followed by
        the last meaningful diagnostic line.
        """
        lines = [line.strip() for line in error_output.splitlines() if line.strip()]
        # Progress lines carry no diagnosis
        lines = [line for line in lines if not line.startswith(("frame=", "size="))]
        detail = lines[-1] if lines else ""
        if len(detail) > _MAX_DETAIL:
            detail = detail[:_MAX_DETAIL] + "..."

        error, _ = self.classify(error_output)
        if error and detail:
            return f"{error.description}: {detail}"
        if error:
            return error.description
        return detail or "Unknown error"


# Global classifier instance
_classifier: Optional[ErrorClassifier] = None


def get_error_classifier() -> ErrorClassifier:
    """Get or create the global error classifier."""
    global _classifier
    if _classifier is None:
        _classifier = ErrorClassifier()
    return _classifier
