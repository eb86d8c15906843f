from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from pathlib import Path
from typing import Optional

from .utils import subprocess_flags as _subprocess_flags

logger = logging.getLogger(__name__)

TERMINATE_GRACE_SECS = 5.0


def _require_cmd(cmd: str) -> str:
    path = shutil.which(cmd)
    if not path:
        raise RuntimeError(
            f"Required executable '{cmd}' not found in PATH. "
            "Install ffmpeg and ensure it is available on PATH."
        )
    return path


def build_segment_command(
    input_url: str,
    output_pattern: Path,
    segment_secs: float,
    start_number: int,
    *,
    rtsp: bool = False,
    verbose: bool = False,
) -> list[str]:
    """ffmpeg command that copies ``input_url`` into time-split files.

    ``output_pattern`` must contain one ``%d`` for the segment number.
    """
    return [
        "ffmpeg",
        "-v",
        "info" if verbose else "error",
        *(["-rtsp_transport", "tcp"] if rtsp else []),
        "-i",
        input_url,
        "-c",
        "copy",
        "-c:a",
        "copy",
        "-f",
        "segment",
        "-segment_time",
        f"{segment_secs:g}",
        "-segment_start_number",
        str(start_number),
        "-max_muxing_queue_size",
        "512",
        str(output_pattern),
    ]


def run_until_done(
    cmd: list[str],
    shutdown: Optional[threading.Event] = None,
    poll_secs: float = 0.5,
) -> int:
    """Run ``cmd`` and wait for it, terminating it once ``shutdown`` is set.

    Returns the exit status. A child stopped because of ``shutdown`` is not an
    error for the caller to judge; the status is returned as-is.
    """
    _require_cmd(cmd[0])
    logger.debug("Running: %s", " ".join(cmd))
    proc = subprocess.Popen(cmd, **_subprocess_flags())
    try:
        while True:
            try:
                return proc.wait(timeout=poll_secs)
            except subprocess.TimeoutExpired:
                pass
            if shutdown is not None and shutdown.is_set():
                _stop(proc)
                return proc.wait()
    except BaseException:
        _stop(proc)
        raise


def _stop(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    logger.info("Stopping ffmpeg")
    # SIGTERM lets ffmpeg close the current output file cleanly
    proc.terminate()
    try:
        proc.wait(timeout=TERMINATE_GRACE_SECS)
    except subprocess.TimeoutExpired:
        logger.warning("ffmpeg did not terminate gracefully, killing")
        proc.kill()
        proc.wait()
