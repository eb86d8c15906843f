"""Native ingestion loop for plain (MPEG-TS style) segmented streams.

One SegmentDownloader owns one run:

    POLL -> fetch playlist -> download new segments -> (rotate?) -> wait -> POLL

and leaves the loop through exactly one of three doors (end of stream,
failure budget exhausted, shutdown requested). Whichever door is taken, and
also when an exception escapes, the output file is finalized exactly once and
its segment hook dispatched.
"""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path
from typing import Optional, TextIO
from urllib.parse import urljoin

from .fetcher import FetchError, RetryingFetcher
from .hooks import HookDispatcher
from .models import IngestResult, MediaPlaylist, RunConfig, StopReason
from .output import OutputFile
from .playlist import PlaylistParseError, parse_media_playlist

logger = logging.getLogger(__name__)


class SetupError(RuntimeError):
    """Recording cannot start (bad URL, unwritable output, missing tool...)."""


class SegmentDownloader:
    """Polls a media playlist and appends each new segment to an OutputFile."""

    def __init__(
        self,
        config: RunConfig,
        media_url: str,
        fetcher: RetryingFetcher,
        *,
        hooks: Optional[HookDispatcher] = None,
        output: Optional[OutputFile] = None,
        progress_stream: Optional[TextIO] = None,
    ) -> None:
        self.config = config
        self.media_url = media_url
        self.fetcher = fetcher
        self.hooks = hooks or HookDispatcher(config.on_segment)
        self.progress_stream = progress_stream or sys.stderr

        if output is None:
            try:
                output = OutputFile(
                    config.file_extension,
                    config.output_dir,
                    config.segment_secs,
                )
            except OSError as exc:
                raise SetupError(f"Cannot create output file in {config.output_dir}: {exc}") from exc
        self.output = output

        # Raw segment URIs already attempted in this run
        self.seen_segments: set[str] = set()
        self.consecutive_failures = 0
        self.files: list[Path] = []
        self.last_error: Optional[str] = None
        self._finalized = False

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self, shutdown: threading.Event) -> IngestResult:
        """Record until end of stream, failure budget or ``shutdown``."""
        stop_reason: Optional[StopReason] = None
        try:
            while stop_reason is None:
                if shutdown.is_set():
                    stop_reason = StopReason.SHUTDOWN
                    break

                playlist = self._poll_playlist()
                if playlist is None:
                    if self._budget_exhausted():
                        logger.error(
                            "Giving up after %d consecutive failures", self.consecutive_failures
                        )
                        stop_reason = StopReason.FAILURE_BUDGET
                        break
                    shutdown.wait(self.config.poll_interval)
                    continue

                if not self._download_new_segments(playlist, shutdown):
                    stop_reason = StopReason.SHUTDOWN
                    break

                if playlist.end_of_stream:
                    logger.info("Stream ended.")
                    stop_reason = StopReason.END_OF_STREAM
                    break

                shutdown.wait(self.config.poll_interval)
        finally:
            self._finalize()

        return IngestResult(
            total_bytes=self.output.total_bytes,
            stop_reason=stop_reason,
            files=list(self.files),
            pending_hooks=list(self.hooks.pending),
            last_error=self.last_error,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _poll_playlist(self) -> Optional[MediaPlaylist]:
        """Fetch and parse the media playlist; None counts as one failure."""
        cfg = self.config
        try:
            data = self.fetcher.fetch(self.media_url, cfg.timeout, cfg.retries, cfg.retry_delay)
            playlist = parse_media_playlist(data)
        except (FetchError, PlaylistParseError) as exc:
            self.consecutive_failures += 1
            self.last_error = str(exc)
            if not self._budget_exhausted():
                logger.warning(
                    "Playlist error (retrying %d/%d): %s",
                    self.consecutive_failures,
                    cfg.max_failures,
                    exc,
                )
            else:
                logger.error("Playlist error: %s", exc)
            return None

        self.consecutive_failures = 0
        return playlist

    def _budget_exhausted(self) -> bool:
        limit = self.config.max_failures
        return limit > 0 and self.consecutive_failures >= limit

    def _download_new_segments(self, playlist: MediaPlaylist, shutdown: threading.Event) -> bool:
        """Fetch unseen segments in playlist order. False if interrupted by shutdown."""
        cfg = self.config
        for segment in playlist.segments:
            if shutdown.is_set():
                return False

            if segment.uri in self.seen_segments:
                continue
            # Mark before fetching: a failed segment is not retried on the next poll
            self.seen_segments.add(segment.uri)

            segment_url = urljoin(self.media_url, segment.uri)
            if cfg.progress:
                self.progress_stream.write(".")
                self.progress_stream.flush()

            try:
                data = self.fetcher.fetch(segment_url, cfg.timeout, cfg.retries, cfg.retry_delay)
            except FetchError as exc:
                logger.warning("Segment error (giving up): %s", exc)
                continue

            self.output.write(data)
            completed = self.output.maybe_rotate()
            if completed is not None:
                self._completed(completed)
        return True

    def _completed(self, path: Path) -> None:
        self.files.append(path)
        self.hooks.dispatch(path)

    def _finalize(self) -> None:
        if self._finalized:
            return
        self._finalized = True
        final_path = self.output.finalize()
        logger.info("Flushed current segment: %s", final_path)
        self._completed(final_path)
