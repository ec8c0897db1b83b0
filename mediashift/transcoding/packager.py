"""
Result packaging: output bytes plus the metadata a caller needs to save them.
"""

import re

from .models import CommandPlan, Success, TranscodeResult

_UNSAFE = re.compile(r"[^A-Za-z0-9._ -]+")

DEFAULT_STEM = "output"
MAX_STEM_LENGTH = 120


def sanitize_stem(filename: str) -> str:
    """Filename without its extension, reduced to characters safe in a header."""
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    stem = name.rsplit(".", 1)[0] if "." in name else name
    stem = _UNSAFE.sub("_", stem).strip(" ._")
    return stem[:MAX_STEM_LENGTH] or DEFAULT_STEM


def pack(success: Success, source_filename: str, plan: CommandPlan, original_size: int) -> TranscodeResult:
    """Build the final result for a successful execution."""
    return TranscodeResult(
        data=success.data,
        mime_type=plan.output_mime_type,
        filename=f"{sanitize_stem(source_filename)}.{plan.output_extension}",
        original_size=original_size,
        output_size=success.byte_length,
    )
