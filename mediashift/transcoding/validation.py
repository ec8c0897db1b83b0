"""
Output sanity checks applied to every backend's result.

A run only counts as successful when it produced a non-empty file whose
leading bytes look like the container the plan asked for.
"""

from typing import Callable, Dict, Optional, Tuple


def _is_mp4(data: bytes) -> bool:
    return len(data) >= 8 and data[4:8] in (b"ftyp", b"moov", b"mdat", b"free", b"wide")


def _is_matroska(data: bytes) -> bool:
    return data.startswith(b"\x1a\x45\xdf\xa3")


def _is_gif(data: bytes) -> bool:
    return data.startswith(b"GIF87a") or data.startswith(b"GIF89a")


def _is_mp3(data: bytes) -> bool:
    if data.startswith(b"ID3"):
        return True
    # MPEG audio frame sync: 11 set bits
    return len(data) >= 2 and data[0] == 0xFF and (data[1] & 0xE0) == 0xE0


def _is_riff(form: bytes) -> Callable[[bytes], bool]:
    def check(data: bytes) -> bool:
        return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == form
    return check


def _is_ogg(data: bytes) -> bool:
    return data.startswith(b"OggS")


def _is_flac(data: bytes) -> bool:
    return data.startswith(b"fLaC")


def _is_adts(data: bytes) -> bool:
    return len(data) >= 2 and data[0] == 0xFF and (data[1] & 0xF0) == 0xF0


def _is_asf(data: bytes) -> bool:
    return data.startswith(b"\x30\x26\xb2\x75")


def _is_png(data: bytes) -> bool:
    return data.startswith(b"\x89PNG\r\n\x1a\n")


def _is_jpeg(data: bytes) -> bool:
    return data.startswith(b"\xff\xd8\xff")


def _is_bmp(data: bytes) -> bool:
    return data.startswith(b"BM")


SIGNATURES: Dict[str, Callable[[bytes], bool]] = {
    "mp4": _is_mp4,
    "mov": _is_mp4,
    "m4a": _is_mp4,
    "mkv": _is_matroska,
    "webm": _is_matroska,
    "gif": _is_gif,
    "mp3": _is_mp3,
    "wav": _is_riff(b"WAVE"),
    "ogg": _is_ogg,
    "flac": _is_flac,
    "aac": _is_adts,
    "wma": _is_asf,
    "png": _is_png,
    "jpg": _is_jpeg,
    "webp": _is_riff(b"WEBP"),
    "bmp": _is_bmp,
}


def validate_output(data: Optional[bytes], extension: str) -> Tuple[bool, str]:
    """
    Check produced bytes against the expected container.

    Returns:
        Tuple of (is_valid, reason). Extensions without a known signature
        pass as long as the output is non-empty.
    """
    if not data:
        return False, "Output is empty"

    check = SIGNATURES.get(extension.lower())
    if check is None:
        return True, ""
    if not check(data):
        return False, f"Output does not look like a {extension} file"
    return True, ""
