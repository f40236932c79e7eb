"""
Data structures describing a segmented download job and its outcome.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from vod_squirrel.core.cancellation import CancellationBroadcaster


class SegmentState(Enum):
    """Lifecycle of a single segment within a job."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DONE = "done"
    FAILED = "failed"


@dataclass
class Segment:
    """One contiguous chunk of the remote stream, fetched independently."""

    index: int
    source_uri: str
    local_path: Path
    state: SegmentState = SegmentState.PENDING
    attempts: int = 0
    error: str | None = None
    size_bytes: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.state in (SegmentState.DONE, SegmentState.FAILED)

    def mark_failed(self, reason: str) -> None:
        self.state = SegmentState.FAILED
        self.error = reason


@dataclass
class DownloadJob:
    """An ordered, immutable set of segments downloaded under one permit pool."""

    segments: list[Segment]
    concurrency_limit: int
    cancellation: CancellationBroadcaster
    description: str = field(default="", repr=False)

    def __post_init__(self) -> None:
        if self.concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1.")
        indices = [segment.index for segment in self.segments]
        if len(set(indices)) != len(indices):
            raise ValueError("Segment indices must be unique within a job.")

    def ordered(self) -> list[Segment]:
        return sorted(self.segments, key=lambda segment: segment.index)


@dataclass(frozen=True)
class PartialFailure:
    """
    Outcome of a job in which at least one segment did not complete.

    `cancelled` is True when the job stopped because cancellation was requested
    rather than because segments exhausted their retries.
    """

    completed: tuple[Segment, ...]
    failed: tuple[Segment, ...]
    cancelled: bool = False

    @property
    def failed_indices(self) -> list[int]:
        return [segment.index for segment in self.failed]


JobResult = list[Path] | PartialFailure
