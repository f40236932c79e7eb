import pytest
from conftest import MASTER_PLAYLIST, MEDIA_PLAYLIST, MEDIA_URL

from vod_squirrel.api.playlist import (
    build_segments,
    list_variants,
    parse_master_playlist,
    parse_media_playlist,
    select_variant,
)
from vod_squirrel.exceptions import PlaylistError
from vod_squirrel.models.segment import SegmentState

USHER_URL = "https://usher.ttvnw.net/vod/123456.m3u8"


def test_variants_are_listed_in_playlist_order():
    master = parse_master_playlist(MASTER_PLAYLIST, USHER_URL)

    variants = list_variants(master)

    assert [v.resolution for v in variants] == ["1920x1080", "1280x720"]
    assert [v.name for v in variants] == ["chunked", "720p60"]
    assert variants[0].bandwidth == 8000000


def test_first_variant_is_selected():
    master = parse_master_playlist(MASTER_PLAYLIST, USHER_URL)

    assert select_variant(master).uri == MEDIA_URL


def test_segments_resolve_against_media_url(tmp_path):
    media = parse_media_playlist(MEDIA_PLAYLIST, MEDIA_URL)

    segments = build_segments(media, MEDIA_URL, tmp_path)

    assert [s.index for s in segments] == [0, 1, 2]
    assert [s.source_uri for s in segments] == [
        "https://cdn.example.com/abc/chunked/0.ts",
        "https://cdn.example.com/abc/chunked/1-muted.ts",
        "https://cdn.example.com/abc/chunked/2.ts",
    ]
    assert [s.local_path.name for s in segments] == ["0.ts", "1-muted.ts", "2.ts"]
    assert all(s.state is SegmentState.PENDING for s in segments)


def test_duplicate_segment_names_are_rejected(tmp_path):
    body = "#EXTM3U\n#EXTINF:10,\na/0.ts\n#EXTINF:10,\nb/0.ts\n#EXT-X-ENDLIST\n"
    media = parse_media_playlist(body, MEDIA_URL)

    with pytest.raises(PlaylistError):
        build_segments(media, MEDIA_URL, tmp_path)


def test_media_parser_rejects_master_playlist():
    with pytest.raises(PlaylistError):
        parse_media_playlist(MASTER_PLAYLIST, USHER_URL)


def test_master_parser_rejects_media_playlist():
    with pytest.raises(PlaylistError):
        parse_master_playlist(MEDIA_PLAYLIST, MEDIA_URL)


def test_empty_media_playlist_is_rejected():
    with pytest.raises(PlaylistError):
        parse_media_playlist("#EXTM3U\n#EXT-X-ENDLIST\n", MEDIA_URL)
