"""
Utilities for handling file paths and parsing video references.
"""

import re
from pathlib import Path, PurePosixPath
from urllib.parse import urlsplit

from pathvalidate import sanitize_filename

VIDEO_URL_PATTERN = re.compile(r"twitch\.tv/(?:[^/]+/)?videos?/(?P<id>\d+)")


def extract_video_id(reference: str) -> int:
    """
    Extracts a numeric video ID from an ID or a twitch.tv video URL.

    Raises:
        ValueError: If no video ID can be found.
    """
    reference = reference.strip()
    if reference.isdigit():
        return int(reference)

    match = VIDEO_URL_PATTERN.search(reference)
    if match:
        return int(match.group("id"))

    raise ValueError(f"Unable to parse a Twitch video URL / ID from '{reference}'.")


def segment_file_name(segment_uri: str) -> str:
    """
    Derives the local file name of a segment from its playlist URI.

    The provider's own name is kept (e.g. '12-muted.ts') rather than renumbered,
    only the query string and directories are dropped.
    """
    name = PurePosixPath(urlsplit(segment_uri).path).name
    return sanitize_filename(name) or "segment.ts"


def job_directory(root: Path, video_id: int) -> Path:
    """Returns the per-video working directory below `root`."""
    return root / f"vod-squirrel-{video_id}"


def create_dir(directory_path: Path) -> bool:
    """
    Creates a directory if it does not already exist.

    Returns:
        True if the directory already existed.
    """
    existed = directory_path.is_dir()
    directory_path.mkdir(parents=True, exist_ok=True)
    return existed
