"""Centralized logging configuration for hlsrec.

Usage:
    from hlsrec.logging_config import setup_logging
    setup_logging()  # Call once at startup

    # Then in any module:
    import logging
    log = logging.getLogger("hlsrec.mymodule")
"""

from __future__ import annotations

import logging
import os
import re
import sys
from pathlib import Path
from typing import Dict, Optional


LOG_FILE_ENV = "HLSREC_LOG_FILE"
MODULE_LEVELS_ENV = "HLSREC_LOG_MODULE_LEVELS"

_CONFIGURED = False


def _parse_module_levels(spec: str) -> Dict[str, int]:
    """Parse per-module logger levels from an env-var style string.

    Format:
        HLSREC_LOG_MODULE_LEVELS="hlsrec.ingest=DEBUG,hlsrec.ffmpeg=INFO"

    Notes:
      - Names not starting with "hlsrec" are auto-prefixed.
      - Separators: comma/semicolon. Assignment: "=" or ":".
      - Invalid entries are ignored.
    """
    out: Dict[str, int] = {}
    if not spec:
        return out
    for part in re.split(r"[;,]+", spec):
        part = part.strip()
        if not part:
            continue
        if "=" in part:
            name, level_str = part.split("=", 1)
        elif ":" in part:
            name, level_str = part.split(":", 1)
        else:
            continue
        name = name.strip()
        level_str = level_str.strip().upper()
        if not name or not level_str:
            continue
        if not name.startswith("hlsrec"):
            name = f"hlsrec.{name}"
        level = getattr(logging, level_str, None)
        if isinstance(level, int):
            out[name] = level
    return out


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    format_string: Optional[str] = None,
) -> None:
    """Configure logging for the hlsrec package.

    Args:
        level: Logging level (default: INFO)
        log_file: Optional file path to write logs to. Falls back to
            $HLSREC_LOG_FILE when not given.
        format_string: Custom format string (default uses a standard format)
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    if log_file is None:
        env_file = os.getenv(LOG_FILE_ENV, "").strip()
        if env_file:
            log_file = Path(env_file)

    logger = logging.getLogger("hlsrec")
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    # Permissive handler so per-module overrides can enable DEBUG on their own.
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(file_handler)

    logger.propagate = False

    module_levels = _parse_module_levels(os.getenv(MODULE_LEVELS_ENV, ""))
    for name, lvl in module_levels.items():
        logging.getLogger(name).setLevel(lvl)

    _CONFIGURED = True

