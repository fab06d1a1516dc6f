"""Secure parallel converter for photos and videos, driven by ImageMagick and ffmpeg."""

__version__ = "1.0.0"