"""Data models for stream ingest."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union


class StreamFormat(str, Enum):
    """How the media playlist's segments must be handled."""
    PLAIN = "plain"            # MPEG-TS style segments, appended natively
    FRAGMENTED = "fragmented"  # EXT-X-MAP init section, handed to ffmpeg
    DIRECT = "direct"          # URL passed to ffmpeg without inspection
    RTSP = "rtsp"              # alternate transport, handed to ffmpeg


class StopReason(str, Enum):
    """Why an ingestion run stopped."""
    END_OF_STREAM = "end_of_stream"
    SHUTDOWN = "shutdown"
    FAILURE_BUDGET = "failure_budget"
    PROCESS_EXIT = "process_exit"  # external transcoder finished on its own


# ---------------------------------------------------------------------------
# Playlist sum type
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Variant:
    """One rendition listed in a master playlist."""

    uri: str
    resolution: Optional[tuple[int, int]] = None
    frame_rate: Optional[float] = None
    # Raw EXT-X-STREAM-INF attributes, keys upper-cased (e.g. "NAME")
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def area(self) -> int:
        if not self.resolution:
            return 0
        width, height = self.resolution
        return width * height


@dataclass(frozen=True)
class Segment:
    uri: str
    has_init_map: bool = False


@dataclass(frozen=True)
class MasterPlaylist:
    variants: list[Variant] = field(default_factory=list)


@dataclass(frozen=True)
class MediaPlaylist:
    segments: list[Segment] = field(default_factory=list)
    end_of_stream: bool = False


Playlist = Union[MasterPlaylist, MediaPlaylist]


# ---------------------------------------------------------------------------
# Run configuration / results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RunConfig:
    """Immutable snapshot of everything a recording run needs."""

    url: str
    output_dir: Path = Path(".")
    file_extension: str = "ts"
    segment_secs: float = 3600.0
    poll_interval: float = 2.0
    max_failures: int = 2          # 0 = unbounded
    timeout: float = 15.0          # total budget per fetch, across retries
    retries: int = 2
    retry_delay: float = 0.5       # seconds between attempts
    on_segment: Optional[str] = None
    on_exit: Optional[str] = None
    verbose: bool = False
    progress: bool = False
    force_ffmpeg: bool = False
    direct: bool = False
    insecure: bool = False
    username: Optional[str] = None
    password: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("url must not be empty")
        if not self.file_extension or "/" in self.file_extension:
            raise ValueError(f"invalid file extension: {self.file_extension!r}")
        if self.segment_secs <= 0:
            raise ValueError("segment_secs must be > 0")
        if self.poll_interval < 0:
            raise ValueError("poll_interval must be >= 0")
        if self.max_failures < 0:
            raise ValueError("max_failures must be >= 0")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if self.retries < 0:
            raise ValueError("retries must be >= 0")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must be >= 0")
        # Normalize without breaking frozen-ness
        object.__setattr__(self, "output_dir", Path(self.output_dir))
        object.__setattr__(self, "file_extension", self.file_extension.lstrip("."))

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "output_dir": str(self.output_dir),
            "file_extension": self.file_extension,
            "segment_secs": self.segment_secs,
            "poll_interval": self.poll_interval,
            "max_failures": self.max_failures,
            "timeout": self.timeout,
            "retries": self.retries,
            "retry_delay": self.retry_delay,
            "on_segment": self.on_segment,
            "on_exit": self.on_exit,
            "verbose": self.verbose,
            "progress": self.progress,
            "force_ffmpeg": self.force_ffmpeg,
            "direct": self.direct,
            "insecure": self.insecure,
            "username": self.username,
            # never echo the password
            "password": "***" if self.password else None,
        }


@dataclass
class IngestResult:
    """What a finished SegmentDownloader run hands back to its caller."""

    total_bytes: int
    stop_reason: StopReason
    files: list[Path] = field(default_factory=list)
    pending_hooks: list[Any] = field(default_factory=list)  # list[HookHandle]
    last_error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_bytes": self.total_bytes,
            "stop_reason": self.stop_reason.value,
            "files": [str(p) for p in self.files],
            "pending_hooks": len(self.pending_hooks),
            "last_error": self.last_error,
        }


@dataclass
class RecordingSummary:
    """Complete result of one ``record()`` call."""

    total_bytes: int
    elapsed_seconds: float
    stop_reason: StopReason
    stream_format: StreamFormat
    media_url: str
    last_error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.stop_reason == StopReason.FAILURE_BUDGET

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_bytes": self.total_bytes,
            "elapsed_seconds": self.elapsed_seconds,
            "stop_reason": self.stop_reason.value,
            "stream_format": self.stream_format.value,
            "media_url": self.media_url,
            "last_error": self.last_error,
        }
