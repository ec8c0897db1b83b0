"""
MediaShift - file conversion and compression service built around FFmpeg
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
