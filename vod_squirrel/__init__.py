"""
vod-squirrel: archives Twitch videos by downloading their HLS segments,
joining them locally and optionally uploading the result to YouTube.
"""

__version__ = "0.1.0"
