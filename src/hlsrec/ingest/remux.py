"""Recording through ffmpeg for streams the native loop does not handle.

Used for fMP4 playlists (EXT-X-MAP), for ``--ffmpeg``/``--direct`` and for
RTSP sources. ffmpeg's segment muxer does the splitting; a SegmentWatcher
thread notices finished files so the byte count and segment hooks behave
like the native path.
"""

from __future__ import annotations

import logging
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlsplit, urlunsplit

from ..ffmpeg import build_segment_command, run_until_done
from .hooks import HookDispatcher
from .models import RunConfig
from .output import first_free_index, timestamp_prefix

logger = logging.getLogger(__name__)

WATCH_INTERVAL_SECS = 1.0


def is_rtsp_url(url: str) -> bool:
    return url.lower().startswith(("rtsp://", "rtsps://"))


def with_credentials(url: str, username: Optional[str], password: Optional[str]) -> str:
    """Embed ``username``/``password`` in ``url`` unless it already has some."""
    if not username:
        return url
    parts = urlsplit(url)
    if "@" in parts.netloc:
        return url
    userinfo = quote(username, safe="")
    if password:
        userinfo += ":" + quote(password, safe="")
    return urlunsplit(parts._replace(netloc=f"{userinfo}@{parts.netloc}"))


class SegmentWatcher:
    """Polls ``output_dir`` for files written by ffmpeg's segment muxer.

    A file counts as complete once a higher-numbered sibling exists, or when
    ``finish()`` is called after ffmpeg has exited. Its size is recorded
    before the hook fires since the hook may move or delete it.
    """

    def __init__(
        self,
        output_dir: Path,
        prefix: str,
        file_extension: str,
        hooks: HookDispatcher,
        interval: float = WATCH_INTERVAL_SECS,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.hooks = hooks
        self.interval = interval
        self.total_bytes = 0
        self.completed: list[Path] = []
        self._pattern = re.compile(rf"^{re.escape(prefix)}_(\d+)\.{re.escape(file_extension)}$")
        self._min_index = 0
        self._reported: set[int] = set()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self, min_index: int = 0) -> None:
        self._min_index = min_index
        self._thread = threading.Thread(target=self._loop, name="segment-watcher", daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.scan()

    def _indexed_files(self) -> dict[int, Path]:
        found: dict[int, Path] = {}
        for path in self.output_dir.iterdir():
            match = self._pattern.match(path.name)
            if match:
                index = int(match.group(1))
                if index >= self._min_index:
                    found[index] = path
        return found

    def scan(self, final: bool = False) -> None:
        files = self._indexed_files()
        if not files:
            return
        newest = max(files)
        for index in sorted(files):
            if index in self._reported:
                continue
            if index == newest and not final:
                continue
            self._reported.add(index)
            self._complete(files[index])

    def _complete(self, path: Path) -> None:
        try:
            self.total_bytes += path.stat().st_size
        except OSError as exc:
            logger.warning("Could not stat %s: %s", path, exc)
        self.completed.append(path)
        logger.info("Completed segment: %s", path)
        self.hooks.dispatch(path)

    def finish(self) -> None:
        """Stop polling and report whatever is left."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
        self.scan(final=True)


def record_with_ffmpeg(
    input_url: str,
    config: RunConfig,
    shutdown: threading.Event,
    hooks: HookDispatcher,
    *,
    rtsp: bool = False,
) -> int:
    """Run ffmpeg's segment muxer on ``input_url``; returns bytes recorded.

    Raises:
        RuntimeError: ffmpeg is missing, or exited non-zero without a
            shutdown having been requested.
    """
    start = datetime.now()
    prefix = timestamp_prefix(start)
    start_index = first_free_index(config.output_dir, start, config.file_extension)
    output_pattern = config.output_dir / f"{prefix}_%d.{config.file_extension}"

    logger.info("Handing stream to ffmpeg, output pattern: %s", output_pattern)
    if start_index > 0:
        logger.info("Starting at segment index: %d", start_index)

    cmd = build_segment_command(
        input_url,
        output_pattern,
        config.segment_secs,
        start_index,
        rtsp=rtsp,
        verbose=config.verbose,
    )

    watcher = SegmentWatcher(config.output_dir, prefix, config.file_extension, hooks)
    watcher.start(min_index=start_index)
    try:
        status = run_until_done(cmd, shutdown)
    finally:
        watcher.finish()

    if status != 0 and not shutdown.is_set():
        raise RuntimeError(f"FFmpeg exited with: {status}")
    return watcher.total_bytes
