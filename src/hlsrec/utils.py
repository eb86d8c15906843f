"""Shared utility functions for hlsrec.

This module provides common utilities used across multiple modules:
- subprocess_flags(): Windows-specific flags to hide console windows
- run_shell(): run a user-supplied shell command, logging instead of raising
"""

from __future__ import annotations

import logging
import subprocess
import sys
from typing import Any, Dict

logger = logging.getLogger(__name__)


def subprocess_flags() -> Dict[str, Any]:
    """Return subprocess flags to hide console window on Windows.

    Usage:
        result = subprocess.run(cmd, **subprocess_flags())

    Returns:
        Dict with 'creationflags' on Windows, empty dict otherwise.
    """
    if sys.platform == "win32":
        # CREATE_NO_WINDOW = 0x08000000
        return {"creationflags": 0x08000000}
    return {}


def run_shell(cmd: str, label: str = "Command") -> bool:
    """Run ``cmd`` through the system shell and wait for it.

    Failures are logged, never raised. Returns True if the command exited 0.
    """
    logger.debug("Running: %s", cmd)
    try:
        result = subprocess.run(cmd, shell=True, check=False, **subprocess_flags())
    except OSError as exc:
        logger.error("Failed to run %s: %s", label.lower(), exc)
        return False
    if result.returncode != 0:
        logger.warning("%s exited with status %d", label, result.returncode)
        return False
    return True
