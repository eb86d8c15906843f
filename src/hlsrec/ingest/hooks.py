"""User command hooks.

Two hooks exist:

- the *segment* hook runs once for every completed output file, in a
  background thread so it never holds up ingestion. ``{}`` in the template is
  replaced by the file path.
- the *exit* hook runs once, synchronously, after recording has stopped.
  Placeholders: ``%d`` last two components of the output directory,
  ``%t`` elapsed time (``H:MM:SS`` or ``M:SS``), ``%s`` human readable size,
  ``%b`` byte count, ``%m`` whole MiB.

Templates are filled by plain substring replacement (no shell escaping) and
run through the system shell. Hook failures are logged and otherwise ignored.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Iterable, Optional

from ..utils import run_shell

logger = logging.getLogger(__name__)

DRAIN_TIMEOUT_SECS = 60.0

KB = 1024
MB = KB * 1024
GB = MB * 1024


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_bytes(num_bytes: int) -> str:
    if num_bytes >= GB:
        return f"{num_bytes / GB:.2f} GB"
    if num_bytes >= MB:
        return f"{num_bytes / MB:.2f} MB"
    if num_bytes >= KB:
        return f"{num_bytes / KB:.2f} KB"
    return f"{num_bytes} B"


def format_duration(seconds: int) -> str:
    seconds = max(0, int(seconds))
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def short_dir(output_dir: Path) -> str:
    """Last two path components, e.g. "/srv/rec/show1" -> "rec/show1"."""
    path = Path(output_dir)
    parts = [p for p in path.parts if p != path.anchor]
    if not parts:
        return "."
    return "/".join(parts[-2:])


def render_segment_command(template: str, path: Path) -> str:
    return template.replace("{}", str(path))


def render_exit_command(
    template: str,
    duration_secs: int,
    total_bytes: int,
    output_dir: Path,
) -> str:
    return (
        template.replace("%d", short_dir(output_dir))
        .replace("%t", format_duration(duration_secs))
        .replace("%s", format_bytes(total_bytes))
        .replace("%b", str(total_bytes))
        .replace("%m", str(total_bytes // MB))
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

def run_segment_command(template: str, path: Path) -> None:
    run_shell(render_segment_command(template, path), label="Segment command")


def run_exit_command(
    template: str,
    duration_secs: int,
    total_bytes: int,
    output_dir: Path,
) -> None:
    cmd = render_exit_command(template, duration_secs, total_bytes, output_dir)
    logger.info("Running exit command: %s", cmd)
    run_shell(cmd, label="Exit command")


class HookHandle:
    """A segment hook running in a daemon thread."""

    def __init__(self, template: str, path: Path) -> None:
        self.path = Path(path)
        self._thread = threading.Thread(
            target=self._run,
            args=(template,),
            name=f"hook-{self.path.name}",
            daemon=True,
        )

    def _run(self, template: str) -> None:
        try:
            run_segment_command(template, self.path)
        except Exception:
            logger.exception("Segment hook for %s crashed", self.path)

    def start(self) -> "HookHandle":
        self._thread.start()
        return self

    def done(self) -> bool:
        return not self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait up to ``timeout`` seconds; True if the hook finished."""
        self._thread.join(timeout)
        return self.done()


class HookDispatcher:
    """Fires the segment hook for completed files and remembers the handles.

    With no template configured, dispatch is a no-op.
    """

    def __init__(self, segment_template: Optional[str] = None) -> None:
        self.segment_template = segment_template
        self.pending: list[HookHandle] = []

    def dispatch(self, path: Path) -> Optional[HookHandle]:
        if not self.segment_template:
            return None
        handle = HookHandle(self.segment_template, path).start()
        self.pending.append(handle)
        return handle


def drain_hooks(handles: Iterable[HookHandle], timeout: float = DRAIN_TIMEOUT_SECS) -> int:
    """Wait for outstanding hooks, at most ``timeout`` seconds each.

    Returns how many were abandoned. Abandoned hooks keep running as daemon
    threads and die with the process.
    """
    unfinished = [h for h in handles if not h.done()]
    if not unfinished:
        return 0

    logger.info("Waiting for %d pending commands to complete...", len(unfinished))
    abandoned = 0
    for handle in unfinished:
        if not handle.join(timeout):
            abandoned += 1
            logger.warning("Segment command for %s timed out after %gs", handle.path, timeout)
    return abandoned
