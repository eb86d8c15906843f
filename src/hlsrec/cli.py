from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .ingest import FetchError, PlaylistParseError, RunConfig, SetupError
from .ingest.runner import install_shutdown_handler, record
from .logging_config import setup_logging

logger = logging.getLogger("hlsrec.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_FAKE_ERROR = 130


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="hlsrec", description="Download m3u8 streams to chunked video files")
    p.add_argument("url", help="M3U8 (or rtsp://) URL to record")
    p.add_argument("-o", "--output", type=Path, default=Path("."), help="Output directory")
    p.add_argument("-s", "--segment-secs", type=float, default=3600,
                   help="Rotate to a new output file after this many seconds")
    p.add_argument("--file-extension", default="ts", help="Output file extension")
    p.add_argument("--poll-interval", type=float, default=2, help="Playlist poll interval in seconds (live streams)")
    p.add_argument("--max-failures", type=int, default=2,
                   help="Consecutive playlist fetch/parse failures before giving up (0 = never)")
    p.add_argument("--timeout", type=float, default=15, help="Total seconds for one fetch, across all retries")
    p.add_argument("--retries", type=int, default=2, help="Retries per fetch (within --timeout)")
    p.add_argument("--retry-delay-ms", type=int, default=500, help="Delay between retry attempts in milliseconds")
    p.add_argument("--on-segment", default=None,
                   help="Command to run after each output file is completed; {} is replaced by its path. "
                        "Example: --on-segment \"ffmpeg -i {} -c copy /archive/{}\"")
    p.add_argument("--on-exit", default=None,
                   help="Command to run on exit. Placeholders: %%d output directory (last 2 components), "
                        "%%t duration, %%s size, %%b bytes, %%m MiB")
    p.add_argument("--ffmpeg", action="store_true", help="Force ffmpeg mode (useful for audio streams like MP3)")
    p.add_argument("--direct", action="store_true", help="Skip m3u8 parsing and pass the URL directly to ffmpeg")
    p.add_argument("--insecure", action="store_true", help="Disable HTTPS certificate verification")
    p.add_argument("--username", default=None, help="Username for RTSP authentication")
    p.add_argument("--password", default=None, help="Password for RTSP authentication")
    p.add_argument("--progress", action="store_true", help="Show progress dots")
    p.add_argument("--verbose", action="store_true", help="Show verbose logs")
    p.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")
    p.add_argument("--fake-exit-err", action="store_true", help="Exit with status 130 after a normal run")
    return p


def config_from_args(args: argparse.Namespace) -> RunConfig:
    return RunConfig(
        url=args.url,
        output_dir=args.output,
        file_extension=args.file_extension,
        segment_secs=args.segment_secs,
        poll_interval=args.poll_interval,
        max_failures=args.max_failures,
        timeout=args.timeout,
        retries=args.retries,
        retry_delay=args.retry_delay_ms / 1000.0,
        on_segment=args.on_segment,
        on_exit=args.on_exit,
        verbose=args.verbose,
        progress=args.progress,
        force_ffmpeg=args.ffmpeg or args.direct,
        direct=args.direct,
        insecure=args.insecure,
        username=args.username,
        password=args.password,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO, log_file=args.log_file)

    try:
        config = config_from_args(args)
    except ValueError as e:
        parser.error(str(e))
    logger.debug("Config: %s", config.to_dict())

    shutdown = install_shutdown_handler()
    try:
        summary = record(config, shutdown)
    except (SetupError, FetchError, PlaylistParseError, RuntimeError) as e:
        logger.error("%s", e)
        return EXIT_FAILED

    logger.info("Recorded %d bytes in %.0fs (%s)", summary.total_bytes, summary.elapsed_seconds, summary.stop_reason.value)
    logger.debug("Summary: %s", summary.to_dict())

    if args.fake_exit_err:
        return EXIT_FAKE_ERROR
    if summary.failed:
        return EXIT_FAILED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
