"""
Media Processing Layer.

This package streams segments to disk, joins them with ffmpeg and uploads the
result.
"""

from .downloader import SegmentFetcher
from .uploader import YouTubeUploader

__all__ = ["SegmentFetcher", "YouTubeUploader"]
