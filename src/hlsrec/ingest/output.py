"""Append-only output file that rotates on a wall-clock schedule.

Files are named ``{YYYY_MM_DD-HH_MM}_{index}.{ext}``. The timestamp is taken
once when the OutputFile is created and shared by every rotation; the index
starts at the first value with no existing file and then goes up by one per
rotation.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Callable, Optional

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y_%m_%d-%H_%M"


def timestamp_prefix(start: datetime) -> str:
    return start.strftime(TIMESTAMP_FORMAT)


def format_filename(start: datetime, index: int, file_extension: str) -> str:
    return f"{timestamp_prefix(start)}_{index}.{file_extension}"


def first_free_index(output_dir: Path, start: datetime, file_extension: str) -> int:
    """Lowest index whose file does not exist yet in ``output_dir``."""
    index = 0
    while (output_dir / format_filename(start, index, file_extension)).exists():
        index += 1
    return index


class OutputFile:
    """Sink for segment payloads.

    Never overwrites: every file is opened in exclusive-create mode.
    """

    def __init__(
        self,
        file_extension: str,
        output_dir: Path,
        rotation_secs: float,
        *,
        start_time: Optional[datetime] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.file_extension = file_extension
        self.output_dir = Path(output_dir)
        self.rotation_secs = rotation_secs
        self.start_time = start_time or datetime.now()
        self._clock = clock

        self.index = first_free_index(self.output_dir, self.start_time, file_extension)
        self._total_bytes = 0
        self._finalized = False

        path = self.current_path
        logger.debug("Writing to: %s", path)
        self._fh: BinaryIO = path.open("xb")
        self._window_start = self._clock()

    @property
    def current_path(self) -> Path:
        return self.output_dir / format_filename(self.start_time, self.index, self.file_extension)

    @property
    def total_bytes(self) -> int:
        """Bytes written across every rotation."""
        return self._total_bytes

    @property
    def finalized(self) -> bool:
        return self._finalized

    def write(self, data: bytes) -> None:
        if self._finalized:
            raise ValueError(f"write to finalized output file {self.current_path}")
        self._fh.write(data)
        self._total_bytes += len(data)

    def maybe_rotate(self) -> Optional[Path]:
        """Rotate if the current window is at least ``rotation_secs`` old.

        Returns the path of the completed file, or None if nothing rotated.

        Raises:
            FileExistsError: the next file already exists. The current file
                stays open and current, so ``finalize()`` still closes it.
        """
        if self._finalized:
            return None
        if self._clock() - self._window_start < self.rotation_secs:
            return None

        completed = self.current_path
        path = self.output_dir / format_filename(self.start_time, self.index + 1, self.file_extension)
        logger.info("Rotating to: %s", path)
        next_fh: BinaryIO = path.open("xb")

        try:
            self._fh.flush()
        finally:
            self._fh.close()
        self._fh = next_fh
        self.index += 1
        self._window_start = self._clock()
        return completed

    def finalize(self) -> Path:
        """Flush and close the current file and return its path.

        Safe to call repeatedly; only the first call touches the file.
        """
        if not self._finalized:
            self._finalized = True
            try:
                self._fh.flush()
            finally:
                self._fh.close()
        return self.current_path
