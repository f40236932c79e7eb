"""
Data Models Layer.

This package contains the pydantic models and dataclasses that define the core
data structures: configuration, video metadata, segments, EventSub sessions and
job statistics.
"""

from .config import AppConfig
from .segment import DownloadJob, PartialFailure, Segment, SegmentState
from .session import Session, SessionState, Subscription
from .stats import JobStats
from .video import VideoInfo

__all__ = [
    "AppConfig",
    "DownloadJob",
    "JobStats",
    "PartialFailure",
    "Segment",
    "SegmentState",
    "Session",
    "SessionState",
    "Subscription",
    "VideoInfo",
]
