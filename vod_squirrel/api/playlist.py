"""
Parses HLS playlists with the m3u8 library and turns a media playlist into
download segments.
"""

from pathlib import Path
from urllib.parse import urljoin

import m3u8

from vod_squirrel.exceptions import PlaylistError
from vod_squirrel.models.segment import Segment
from vod_squirrel.models.video import VariantInfo
from vod_squirrel.utils.path import segment_file_name


def parse_master_playlist(body: str, uri: str = "") -> m3u8.M3U8:
    """
    Raises:
        PlaylistError: If the body is not a master playlist or lists no variants.
    """
    try:
        playlist = m3u8.loads(body, uri=uri or None)
    except ValueError as e:
        raise PlaylistError(f"Master playlist could not be parsed: {e}") from e
    if not playlist.is_variant or not playlist.playlists:
        raise PlaylistError("Master playlist does not list any variants.")
    return playlist


def parse_media_playlist(body: str, uri: str = "") -> m3u8.M3U8:
    """
    Raises:
        PlaylistError: If the body is a master playlist or has no segments.
    """
    try:
        playlist = m3u8.loads(body, uri=uri or None)
    except ValueError as e:
        raise PlaylistError(f"Media playlist could not be parsed: {e}") from e
    if playlist.is_variant:
        raise PlaylistError("Expected a media playlist but got a master playlist.")
    if not playlist.segments:
        raise PlaylistError("Media playlist does not contain any segments.")
    return playlist


def list_variants(master: m3u8.M3U8) -> list[VariantInfo]:
    variants = []
    for entry in master.playlists:
        info = entry.stream_info
        resolution = None
        if info and info.resolution:
            width, height = info.resolution
            resolution = f"{width}x{height}"
        variants.append(
            VariantInfo(
                uri=urljoin(master.base_uri or "", entry.uri),
                resolution=resolution,
                bandwidth=info.bandwidth if info else None,
                name=info.video if info else None,
            )
        )
    return variants


def select_variant(master: m3u8.M3U8) -> VariantInfo:
    """
    Picks the variant to download.

    Twitch lists the source quality first, so the first variant is used.
    """
    variants = list_variants(master)
    if not variants:
        raise PlaylistError("Master playlist does not list any variants.")
    return variants[0]


def build_segments(media: m3u8.M3U8, media_url: str, directory: Path) -> list[Segment]:
    """
    Creates one Segment per playlist entry, in playlist order.

    Segment URIs are resolved relative to `media_url`; local files keep the
    provider's file name so muted chunks ('12-muted.ts') stay recognizable.

    Raises:
        PlaylistError: If two entries map to the same local file.
    """
    segments = []
    seen: set[str] = set()
    for index, entry in enumerate(media.segments):
        name = segment_file_name(entry.uri)
        if name in seen:
            raise PlaylistError(f"Duplicate segment file name '{name}' in playlist.")
        seen.add(name)
        segments.append(
            Segment(
                index=index,
                source_uri=urljoin(media_url, entry.uri),
                local_path=directory / name,
            )
        )
    return segments
