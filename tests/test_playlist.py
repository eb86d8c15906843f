"""Tests for playlist parsing, variant selection and format detection."""

from __future__ import annotations

import pytest

from hlsrec.ingest.models import MasterPlaylist, MediaPlaylist, Segment, Variant
from hlsrec.ingest.playlist import (
    PlaylistParseError,
    extract_frame_rate,
    is_fragmented,
    parse_fps_from_string,
    parse_media_playlist,
    parse_playlist,
    select_best_variant,
)

BASE = "https://cdn.example.com/live/master.m3u8"

MASTER = b"""#EXTM3U
#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360,FRAME-RATE=30.000
low/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=5000000,RESOLUTION=1920x1080,FRAME-RATE=30.000
hd30/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=6000000,RESOLUTION=1920x1080,FRAME-RATE=60.000
hd60/index.m3u8
"""

MASTER_NAMED_FPS = b"""#EXTM3U
#EXT-X-STREAM-INF:BANDWIDTH=3000000,RESOLUTION=1280x720,NAME="FPS:30.0"
a/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=3500000,RESOLUTION=1280x720,NAME="FPS:60.0"
b/index.m3u8
"""

MEDIA_TS = b"""#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:6
#EXT-X-MEDIA-SEQUENCE:0
#EXTINF:6.0,
seg0.ts
#EXTINF:6.0,
seg1.ts
#EXT-X-ENDLIST
"""

MEDIA_FMP4 = b"""#EXTM3U
#EXT-X-VERSION:7
#EXT-X-TARGETDURATION:6
#EXT-X-MAP:URI="init.mp4"
#EXTINF:6.0,
seg0.m4s
#EXTINF:6.0,
seg1.m4s
"""


class TestParsePlaylist:
    def test_master(self):
        """Master playlists yield variants with resolution and frame rate."""
        playlist = parse_playlist(MASTER)
        assert isinstance(playlist, MasterPlaylist)
        assert [v.uri for v in playlist.variants] == ["low/index.m3u8", "hd30/index.m3u8", "hd60/index.m3u8"]
        assert playlist.variants[0].resolution == (640, 360)
        assert playlist.variants[2].frame_rate == pytest.approx(60.0)

    def test_master_keeps_name_attribute(self):
        """Non-standard NAME attributes are kept."""
        playlist = parse_playlist(MASTER_NAMED_FPS)
        assert isinstance(playlist, MasterPlaylist)
        assert playlist.variants[1].attributes["NAME"] == "FPS:60.0"

    def test_media(self):
        """Media playlists yield segments and the end-of-stream flag."""
        playlist = parse_playlist(MEDIA_TS)
        assert isinstance(playlist, MediaPlaylist)
        assert [s.uri for s in playlist.segments] == ["seg0.ts", "seg1.ts"]
        assert playlist.end_of_stream is True
        assert not any(s.has_init_map for s in playlist.segments)

    def test_live_media_has_no_end(self):
        """A playlist without ENDLIST is live."""
        playlist = parse_playlist(MEDIA_FMP4)
        assert isinstance(playlist, MediaPlaylist)
        assert playlist.end_of_stream is False

    def test_missing_header(self):
        """A body without #EXTM3U is rejected."""
        with pytest.raises(PlaylistParseError):
            parse_playlist(b"<html>not found</html>")

    def test_not_text(self):
        """Undecodable bytes are rejected."""
        with pytest.raises(PlaylistParseError):
            parse_playlist(b"\xff\xfe\xfa\x00")

    def test_bom_is_tolerated(self):
        """A UTF-8 BOM before the header is accepted."""
        playlist = parse_playlist(b"\xef\xbb\xbf" + MEDIA_TS)
        assert isinstance(playlist, MediaPlaylist)

    def test_media_required(self):
        """parse_media_playlist rejects master playlists."""
        with pytest.raises(PlaylistParseError):
            parse_media_playlist(MASTER)
        assert len(parse_media_playlist(MEDIA_TS).segments) == 2


class TestFrameRate:
    def test_exact_prefix(self):
        """An exact FPS prefix parses the whole number."""
        assert parse_fps_from_string("FPS:30.0") == pytest.approx(30.0)

    def test_marker_inside_string(self):
        """The marker may appear anywhere in the name."""
        assert parse_fps_from_string("1080p60 (FPS:59.94) source") == pytest.approx(59.94)

    def test_no_marker(self):
        """Strings without a number give None."""
        assert parse_fps_from_string("1080p") is None
        assert parse_fps_from_string("FPS:") is None

    def test_padding_is_not_a_number(self):
        """Whitespace after the marker yields no frame rate."""
        assert parse_fps_from_string("FPS: 30") is None
        assert parse_fps_from_string("FPS:30 ") == pytest.approx(30.0)

    def test_underscore_stops_the_number(self):
        """Digit separators are not part of the number."""
        assert parse_fps_from_string("FPS:3_0") == pytest.approx(3.0)

    def test_standard_field_wins(self):
        """A positive FRAME-RATE beats the NAME attribute."""
        v = Variant(uri="x", frame_rate=25.0, attributes={"NAME": "FPS:60"})
        assert extract_frame_rate(v) == 25.0

    def test_name_fallback(self):
        """NAME is used when FRAME-RATE is zero."""
        v = Variant(uri="x", frame_rate=0.0, attributes={"NAME": "FPS:48.0"})
        assert extract_frame_rate(v) == 48.0

    def test_default_zero(self):
        """No frame rate information means 0."""
        assert extract_frame_rate(Variant(uri="x")) == 0.0
        assert extract_frame_rate(Variant(uri="x", attributes={"NAME": "source"})) == 0.0


class TestSelectBestVariant:
    def test_resolution_then_fps(self):
        """The largest resolution wins, frame rate breaks the tie."""
        best = select_best_variant(parse_playlist(MASTER), BASE)
        assert best == "https://cdn.example.com/live/hd60/index.m3u8"

    def test_named_fps_breaks_tie(self):
        """FPS from NAME breaks a resolution tie."""
        best = select_best_variant(parse_playlist(MASTER_NAMED_FPS), BASE)
        assert best == "https://cdn.example.com/live/b/index.m3u8"

    def test_resolution_beats_fps(self):
        """Resolution outranks frame rate."""
        master = MasterPlaylist(variants=[
            Variant(uri="small.m3u8", resolution=(640, 360), frame_rate=120.0),
            Variant(uri="big.m3u8", resolution=(1280, 720), frame_rate=24.0),
        ])
        assert select_best_variant(master, BASE) == "https://cdn.example.com/live/big.m3u8"

    def test_missing_resolution_counts_as_zero(self):
        """Variants without resolution rank lowest."""
        master = MasterPlaylist(variants=[
            Variant(uri="audio.m3u8", frame_rate=60.0),
            Variant(uri="video.m3u8", resolution=(320, 180)),
        ])
        assert select_best_variant(master, BASE).endswith("/video.m3u8")

    def test_absolute_variant_uri(self):
        """Absolute variant URIs are returned unchanged."""
        master = MasterPlaylist(variants=[Variant(uri="https://other.example.com/v.m3u8")])
        assert select_best_variant(master, BASE) == "https://other.example.com/v.m3u8"

    def test_no_variants(self):
        """An empty master playlist selects nothing."""
        assert select_best_variant(MasterPlaylist(variants=[]), BASE) is None


class TestIsFragmented:
    def test_fmp4(self):
        """EXT-X-MAP marks a playlist as fragmented."""
        assert is_fragmented(parse_media_playlist(MEDIA_FMP4)) is True

    def test_ts(self):
        """Plain TS segments are not fragmented."""
        assert is_fragmented(parse_media_playlist(MEDIA_TS)) is False

    def test_any_segment_with_map(self):
        """One mapped segment is enough."""
        playlist = MediaPlaylist(segments=[Segment("a.ts"), Segment("b.m4s", has_init_map=True)])
        assert is_fragmented(playlist) is True

    def test_empty(self):
        """An empty playlist is not fragmented."""
        assert is_fragmented(MediaPlaylist()) is False

    def test_full_tie_picks_last_listed(self):
        """Equal resolution and frame rate: the later variant wins."""
        master = MasterPlaylist(variants=[
            Variant(uri="first.m3u8", resolution=(1280, 720), frame_rate=30.0),
            Variant(uri="second.m3u8", resolution=(1280, 720), frame_rate=30.0),
        ])
        assert select_best_variant(master, "https://x/master.m3u8") == "https://x/second.m3u8"

    def test_earlier_strictly_better_still_wins(self):
        """Reversing the scan does not change a strict maximum."""
        master = MasterPlaylist(variants=[
            Variant(uri="best.m3u8", resolution=(1920, 1080), frame_rate=30.0),
            Variant(uri="other.m3u8", resolution=(1280, 720), frame_rate=30.0),
        ])
        assert select_best_variant(master, "https://x/master.m3u8") == "https://x/best.m3u8"
