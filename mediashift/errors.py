"""
Error taxonomy for MediaShift.

Every failure a caller can observe is one of four kinds. The HTTP layer maps
each kind to a status code; nothing else leaks out of the orchestration core.
"""

from typing import List, Optional


class MediaShiftError(Exception):
    """Base class for all errors surfaced to callers."""

    kind: str = "error"
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.message}


class ValidationError(MediaShiftError):
    """Bad or missing input file, unsupported format, option outside its domain."""

    kind = "validation_error"
    status_code = 400


class ConfigurationError(MediaShiftError):
    """Unknown operation kind or an internal command-building defect."""

    kind = "configuration_error"
    status_code = 500


class ResourceError(MediaShiftError):
    """Scratch-area creation, write or read failure."""

    kind = "resource_error"
    status_code = 500


class EncodingError(MediaShiftError):
    """Every execution attempt failed to produce valid output."""

    kind = "encoding_error"
    status_code = 422

    def __init__(self, message: str, attempts: Optional[List[str]] = None):
        super().__init__(message)
        self.attempts = attempts or []
