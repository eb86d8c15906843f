"""Playlist parsing, variant selection and format detection.

Parsing is delegated to the ``m3u8`` package; its document model is mapped
onto the MasterPlaylist / MediaPlaylist pair from ``models``.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional
from urllib.parse import urljoin

import m3u8

from .models import MasterPlaylist, MediaPlaylist, Playlist, Segment, Variant

logger = logging.getLogger(__name__)

FPS_MARKER = "FPS:"
_FPS_NUMBER = re.compile(r"[0-9.]*")
_LOOSE_FLOAT_CHARS = re.compile(r"[\s_]")


class PlaylistParseError(Exception):
    """The body is not a usable playlist."""


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _clean_attribute(value: Any) -> str:
    return str(value).strip().strip('"')


def _variant_from(model: Any, raw: dict[str, Any]) -> Variant:
    stream_info = model.stream_info
    resolution = None
    if stream_info is not None and stream_info.resolution:
        width, height = stream_info.resolution
        resolution = (int(width), int(height))
    frame_rate = stream_info.frame_rate if stream_info is not None else None

    attributes = {
        name.upper().replace("_", "-"): _clean_attribute(value)
        for name, value in (raw.get("stream_info") or {}).items()
    }
    return Variant(
        uri=model.uri,
        resolution=resolution,
        frame_rate=float(frame_rate) if frame_rate is not None else None,
        attributes=attributes,
    )


def parse_playlist(data: bytes) -> Playlist:
    """Parse raw playlist bytes into a MasterPlaylist or MediaPlaylist.

    Raises:
        PlaylistParseError: if the body is not text, lacks the #EXTM3U
            header, or the parser rejects it.
    """
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise PlaylistParseError(f"Playlist is not UTF-8 text: {exc}") from exc

    if not text.lstrip().startswith("#EXTM3U"):
        raise PlaylistParseError("Missing #EXTM3U header")

    try:
        doc = m3u8.loads(text)
    except Exception as exc:
        raise PlaylistParseError(f"Invalid playlist: {exc}") from exc

    if doc.is_variant:
        raw_entries = doc.data.get("playlists") or []
        variants = []
        for i, model in enumerate(doc.playlists):
            raw = raw_entries[i] if i < len(raw_entries) else {}
            variants.append(_variant_from(model, raw))
        return MasterPlaylist(variants=variants)

    segments = [
        Segment(uri=seg.uri, has_init_map=getattr(seg, "init_section", None) is not None)
        for seg in doc.segments
        if seg.uri
    ]
    return MediaPlaylist(segments=segments, end_of_stream=bool(doc.is_endlist))


def parse_media_playlist(data: bytes) -> MediaPlaylist:
    """Like parse_playlist, but a master playlist is a parse error."""
    playlist = parse_playlist(data)
    if not isinstance(playlist, MediaPlaylist):
        raise PlaylistParseError("Expected a media playlist, got a master playlist")
    return playlist


# ---------------------------------------------------------------------------
# Variant selection
# ---------------------------------------------------------------------------

def parse_fps_from_string(text: str) -> Optional[float]:
    """Pull a frame rate out of strings like "FPS:30.0" or "1080p FPS:59.94".

    An exact "FPS:<number>" prefix is tried first; otherwise the run of
    digits and dots right after the first "FPS:" marker is used.
    """
    if text.startswith(FPS_MARKER):
        number = text[len(FPS_MARKER):]
        # float() would also take padding and "_" separators
        if not _LOOSE_FLOAT_CHARS.search(number):
            try:
                return float(number)
            except ValueError:
                pass

    idx = text.find(FPS_MARKER)
    if idx < 0:
        return None
    match = _FPS_NUMBER.match(text, idx + len(FPS_MARKER))
    digits = match.group(0) if match else ""
    try:
        return float(digits)
    except ValueError:
        return None


def extract_frame_rate(variant: Variant) -> float:
    """FRAME-RATE when positive, else a NAME="FPS:x" attribute, else 0."""
    if variant.frame_rate is not None and variant.frame_rate > 0:
        return variant.frame_rate

    name = variant.attributes.get("NAME")
    if name:
        fps = parse_fps_from_string(name)
        if fps is not None:
            return fps
    return 0.0


def select_best_variant(master: MasterPlaylist, base_url: str) -> Optional[str]:
    """Highest resolution wins; frame rate breaks ties. Returns an absolute URL.

    On a full tie the variant listed last wins.
    """
    if not master.variants:
        return None

    best = max(reversed(master.variants), key=lambda v: (v.area, extract_frame_rate(v)))
    if best.resolution:
        logger.info(
            "Selected: %dx%d @ %.1f fps",
            best.resolution[0],
            best.resolution[1],
            extract_frame_rate(best),
        )
    else:
        logger.info("Selected variant: %s", best.uri)
    return urljoin(base_url, best.uri)


# ---------------------------------------------------------------------------
# Format detection
# ---------------------------------------------------------------------------

def is_fragmented(playlist: MediaPlaylist) -> bool:
    """True if any segment carries an EXT-X-MAP initialization section (fMP4)."""
    return any(seg.has_init_map for seg in playlist.segments)
