"""Top-level recording entry point.

``record()`` resolves what to download, picks the native loop or ffmpeg,
waits for segment hooks, and finally runs the exit hook.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from typing import Any, Optional
from urllib.parse import urlparse

from ..ffmpeg import _require_cmd
from .downloader import SegmentDownloader, SetupError
from .fetcher import RetryingFetcher, build_session
from .hooks import HookDispatcher, drain_hooks, run_exit_command
from .models import (
    MasterPlaylist,
    MediaPlaylist,
    RecordingSummary,
    RunConfig,
    StopReason,
    StreamFormat,
)
from .playlist import is_fragmented, parse_media_playlist, parse_playlist, select_best_variant
from .remux import is_rtsp_url, record_with_ffmpeg, with_credentials

logger = logging.getLogger(__name__)


def install_shutdown_handler(shutdown: Optional[threading.Event] = None) -> threading.Event:
    """Set ``shutdown`` on SIGINT/SIGTERM instead of raising KeyboardInterrupt.

    Must be called from the main thread.
    """
    shutdown = shutdown or threading.Event()

    def _handler(signum: int, frame: Any) -> None:
        logger.warning("Received signal %d, shutting down gracefully...", signum)
        shutdown.set()

    signal.signal(signal.SIGINT, _handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handler)
    return shutdown


def _check_http_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise SetupError(f"Not an http(s) URL: {url!r}")


def _ensure_output_dir(config: RunConfig) -> None:
    try:
        config.output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise SetupError(f"Cannot create output directory {config.output_dir}: {exc}") from exc


def _ensure_ffmpeg() -> None:
    try:
        _require_cmd("ffmpeg")
    except RuntimeError as exc:
        raise SetupError(str(exc)) from exc


def resolve_media_url(fetcher: RetryingFetcher, config: RunConfig) -> str:
    """Return the media playlist URL, picking the best variant of a master playlist."""
    data = fetcher.fetch(config.url, config.timeout, config.retries, config.retry_delay)
    playlist = parse_playlist(data)
    if isinstance(playlist, MasterPlaylist):
        media_url = select_best_variant(playlist, config.url)
        if media_url is None:
            raise SetupError("No suitable variant found")
        return media_url
    return config.url


def detect_format(fetcher: RetryingFetcher, media_url: str, config: RunConfig) -> StreamFormat:
    data = fetcher.fetch(media_url, config.timeout, config.retries, config.retry_delay)
    playlist: MediaPlaylist = parse_media_playlist(data)
    return StreamFormat.FRAGMENTED if is_fragmented(playlist) else StreamFormat.PLAIN


def record(
    config: RunConfig,
    shutdown: Optional[threading.Event] = None,
    fetcher: Optional[RetryingFetcher] = None,
) -> RecordingSummary:
    """Record ``config.url`` until it ends, fails for good, or ``shutdown`` is set.

    Raises:
        SetupError: nothing could be recorded (bad URL, unwritable output dir,
            no variants, ffmpeg missing when needed).
        FetchError / PlaylistParseError: the initial playlist fetches failed.
    """
    started = time.monotonic()
    shutdown = shutdown or threading.Event()
    _ensure_output_dir(config)

    hooks = HookDispatcher(config.on_segment)
    stop_reason = StopReason.PROCESS_EXIT
    last_error: Optional[str] = None
    media_url = config.url

    if is_rtsp_url(config.url):
        stream_format = StreamFormat.RTSP
        logger.info("Detected RTSP stream...")
        _ensure_ffmpeg()
        input_url = with_credentials(config.url, config.username, config.password)
        total_bytes = record_with_ffmpeg(input_url, config, shutdown, hooks, rtsp=True)
    else:
        _check_http_url(config.url)
        owns_fetcher = fetcher is None
        fetcher = fetcher or RetryingFetcher(build_session(config.insecure))
        try:
            if config.direct:
                stream_format = StreamFormat.DIRECT
            else:
                media_url = resolve_media_url(fetcher, config)
                if config.force_ffmpeg:
                    stream_format = StreamFormat.FRAGMENTED
                else:
                    stream_format = detect_format(fetcher, media_url, config)

            if stream_format == StreamFormat.PLAIN:
                logger.info("Detected TS stream, processing natively...")
                downloader = SegmentDownloader(config, media_url, fetcher, hooks=hooks)
                result = downloader.run(shutdown)
                logger.debug("Native ingest finished: %s", result.to_dict())
                total_bytes = result.total_bytes
                stop_reason = result.stop_reason
                last_error = result.last_error
            else:
                logger.info("Using ffmpeg for %s stream", stream_format.value)
                _ensure_ffmpeg()
                total_bytes = record_with_ffmpeg(media_url, config, shutdown, hooks)
        finally:
            if owns_fetcher:
                fetcher.close()

    if stop_reason == StopReason.PROCESS_EXIT and shutdown.is_set():
        stop_reason = StopReason.SHUTDOWN

    drain_hooks(hooks.pending)

    elapsed = time.monotonic() - started
    if config.on_exit:
        run_exit_command(config.on_exit, int(elapsed), total_bytes, config.output_dir)

    return RecordingSummary(
        total_bytes=total_bytes,
        elapsed_seconds=elapsed,
        stop_reason=stop_reason,
        stream_format=stream_format,
        media_url=media_url,
        last_error=last_error,
    )
