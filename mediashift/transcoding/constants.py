"""
Constants and option tables for transcoding operations.

Every value a caller can choose is listed here; anything not in a table is
rejected before it reaches a command line.
"""

from typing import Dict, Tuple


# x264/x265 constant rate factor: lower number = higher quality
VIDEO_CRF: Dict[str, str] = {
    "high": "18",
    "medium": "23",
    "low": "28",
}

# Exact-size scale targets
RESOLUTION_MAP: Dict[str, Tuple[int, int]] = {
    "1080p": (1920, 1080),
    "720p": (1280, 720),
    "480p": (854, 480),
    "360p": (640, 360),
}

FPS_CHOICES: Tuple[str, ...] = ("30", "24", "15")

VIDEO_BITRATE_CHOICES: Tuple[str, ...] = ("1000k", "500k", "250k")

VIDEO_ENCODERS: Dict[str, str] = {
    "h264": "libx264",
    "h265": "libx265",
}

VIDEO_AUDIO_ENCODERS: Dict[str, str] = {
    "aac": "aac",
    "mp3": "libmp3lame",
    "copy": "copy",
}

DEFAULT_AUDIO_BITRATE = "128k"

MP3_BITRATES: Tuple[str, ...] = ("320", "256", "192", "160", "128", "96", "64")

# LAME VBR scale: 0 = best, 9 = smallest
MP3_VBR_BY_TIER: Dict[str, str] = {
    "high": "0",
    "medium": "4",
    "low": "9",
}

MP3_VBR_BY_BITRATE: Dict[str, str] = {
    "320": "0",
    "256": "2",
    "192": "4",
    "128": "6",
    "96": "8",
    "64": "9",
}

# Bitrate used for lossy targets of the generic audio converter
AUDIO_BITRATE_BY_TIER: Dict[str, str] = {
    "high": "320k",
    "medium": "192k",
    "low": "128k",
}

# libvorbis quality scale: higher number = higher quality
VORBIS_QUALITY_BY_TIER: Dict[str, str] = {
    "high": "9",
    "medium": "6",
    "low": "3",
}

WAV_SAMPLE_RATES: Tuple[str, ...] = ("44100", "22050", "11025")

AUDIO_SAMPLE_RATES: Tuple[str, ...] = ("48000", "44100", "22050", "11025")

CHANNEL_COUNTS: Dict[str, str] = {
    "stereo": "2",
    "mono": "1",
}

PCM_CODEC_BY_DEPTH: Dict[str, str] = {
    "16": "pcm_s16le",
    "8": "pcm_u8",
}

LOUDNORM_FILTER = "loudnorm=I=-16:TP=-1.5:LRA=11"

# target format -> (encoder, extension, mime type)
AUDIO_TARGETS: Dict[str, Tuple[str, str, str]] = {
    "mp3": ("libmp3lame", "mp3", "audio/mpeg"),
    "wav": ("pcm_s16le", "wav", "audio/wav"),
    "ogg": ("libvorbis", "ogg", "audio/ogg"),
    "flac": ("flac", "flac", "audio/flac"),
    "aac": ("aac", "aac", "audio/aac"),
    "m4a": ("aac", "m4a", "audio/mp4"),
    "wma": ("wmav2", "wma", "audio/x-ms-wma"),
}

GIF_FPS_CHOICES: Tuple[str, ...] = ("5", "10", "15", "20", "25", "30")
GIF_SCALE_CHOICES: Tuple[str, ...] = ("25", "50", "75", "100")
GIF_COLOR_CHOICES: Tuple[str, ...] = ("16", "32", "64", "128", "256")

VIDEO_GIF_FPS_CHOICES: Tuple[str, ...] = ("5", "10", "15", "20")
VIDEO_GIF_WIDTHS: Tuple[str, ...] = ("240", "320", "480", "640")
VIDEO_GIF_DURATIONS: Tuple[str, ...] = ("3", "5", "10", "15")

FRAME_DELAYS_MS: Tuple[str, ...] = ("100", "200", "300", "500", "750", "1000", "1500", "2000")

# Single-pass palette pipeline; avoids a second invocation for palettegen
PALETTE_FILTER = "split[s0][s1];[s0]palettegen=max_colors={colors}[p];[s1][p]paletteuse=dither=sierra2_4a"

EVEN_DIMENSIONS_FILTER = "scale=trunc(iw/2)*2:trunc(ih/2)*2"

# mjpeg -q:v and libwebp -quality; note the opposite directions
JPEG_QSCALE_BY_TIER: Dict[str, str] = {
    "high": "2",
    "medium": "5",
    "low": "10",
}

WEBP_QUALITY_BY_TIER: Dict[str, str] = {
    "high": "90",
    "medium": "75",
    "low": "50",
}

# target format -> (encoder, extension, mime type)
RASTER_TARGETS: Dict[str, Tuple[str, str, str]] = {
    "png": ("png", "png", "image/png"),
    "jpg": ("mjpeg", "jpg", "image/jpeg"),
    "webp": ("libwebp", "webp", "image/webp"),
    "bmp": ("bmp", "bmp", "image/bmp"),
}

QUALITY_TIERS: Tuple[str, ...] = ("high", "medium", "low")
BOOLEAN_CHOICES: Tuple[str, ...] = ("true", "false")

# Upper bound for start/duration fields, seconds
MAX_TIME_SECONDS = 24 * 3600

MB = 1024 * 1024
