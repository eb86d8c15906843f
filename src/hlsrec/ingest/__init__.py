"""Ingest module for recording HLS streams.

This module provides:
- Budgeted-retry HTTP fetching
- Variant selection and fMP4 detection
- The native segment ingestion loop with time-based file rotation
- An ffmpeg path for fMP4, direct and RTSP sources
- Segment / exit command hooks
"""

from .downloader import SegmentDownloader, SetupError
from .fetcher import FetchError, FetchTimeout, HTTPStatusError, RetryingFetcher, build_session
from .hooks import (
    HookDispatcher,
    HookHandle,
    drain_hooks,
    format_bytes,
    format_duration,
    render_exit_command,
    render_segment_command,
    run_exit_command,
)
from .models import (
    IngestResult,
    MasterPlaylist,
    MediaPlaylist,
    Playlist,
    RecordingSummary,
    RunConfig,
    Segment,
    StopReason,
    StreamFormat,
    Variant,
)
from .output import OutputFile, format_filename
from .playlist import (
    PlaylistParseError,
    extract_frame_rate,
    is_fragmented,
    parse_media_playlist,
    parse_playlist,
    select_best_variant,
)
from .runner import detect_format, install_shutdown_handler, record, resolve_media_url

__all__ = [
    # Main entry points
    "record",
    "resolve_media_url",
    "detect_format",
    "install_shutdown_handler",
    "SegmentDownloader",
    # Exceptions
    "FetchError",
    "FetchTimeout",
    "HTTPStatusError",
    "PlaylistParseError",
    "SetupError",
    # Models
    "IngestResult",
    "MasterPlaylist",
    "MediaPlaylist",
    "Playlist",
    "RecordingSummary",
    "RunConfig",
    "Segment",
    "StopReason",
    "StreamFormat",
    "Variant",
    # Fetch
    "RetryingFetcher",
    "build_session",
    # Playlist
    "extract_frame_rate",
    "is_fragmented",
    "parse_media_playlist",
    "parse_playlist",
    "select_best_variant",
    # Output
    "OutputFile",
    "format_filename",
    # Hooks
    "HookDispatcher",
    "HookHandle",
    "drain_hooks",
    "format_bytes",
    "format_duration",
    "render_exit_command",
    "render_segment_command",
    "run_exit_command",
]
