"""HTTP GET with a single wall-clock budget shared by every retry.

The budget (``total_timeout``) covers all attempts together: each attempt
gets whatever is left of it, and the pause between attempts is clipped to it
as well, so a call returns after roughly ``total_timeout`` seconds no matter
how many retries were allowed.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import requests
import urllib3

from .. import __version__

logger = logging.getLogger(__name__)

USER_AGENT = f"hlsrec/{__version__}"
CHUNK_SIZE = 64 * 1024

Clock = Callable[[], float]
Sleeper = Callable[[float], None]


class FetchError(Exception):
    """A transient failure fetching ``url`` (network, timeout, bad status)."""

    def __init__(self, message: str, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class HTTPStatusError(FetchError):
    """Server answered with a non-2xx status."""

    def __init__(self, status: int, url: str) -> None:
        super().__init__(f"HTTP {status} for {url}", url)
        self.status = status


class FetchTimeout(FetchError):
    """The fetch budget ran out."""


def build_session(insecure: bool = False) -> requests.Session:
    """Create the shared session used for playlists and segments."""
    session = requests.Session()
    session.headers.update({
        "User-Agent": USER_AGENT,
        "Accept-Encoding": "gzip, identity",
    })
    if insecure:
        session.verify = False
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        logger.warning("TLS certificate verification is disabled")
    return session


class RetryingFetcher:
    """Budgeted-retry fetch over a ``requests.Session``.

    ``clock`` and ``sleep`` are injectable so tests can drive time.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleeper = time.sleep,
    ) -> None:
        self.session = session or build_session()
        self._clock = clock
        self._sleep = sleep

    def fetch_once(self, url: str, timeout: float) -> bytes:
        """One GET, bounded by ``timeout`` seconds of wall time.

        The body is streamed so the deadline also applies to slow transfers,
        not just to connect/read stalls. ``iter_content`` undoes a gzip
        Content-Encoding on the fly; any other body is returned unchanged.
        """
        deadline = self._clock() + timeout
        try:
            with self.session.get(url, timeout=timeout, stream=True) as resp:
                if not 200 <= resp.status_code < 300:
                    raise HTTPStatusError(resp.status_code, url)
                chunks: list[bytes] = []
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    chunks.append(chunk)
                    if self._clock() > deadline:
                        raise FetchTimeout(f"Request timed out: {url}", url)
                return b"".join(chunks)
        except requests.Timeout as exc:
            raise FetchTimeout(f"Request timed out: {url}", url) from exc
        except requests.RequestException as exc:
            raise FetchError(f"{type(exc).__name__}: {exc}", url) from exc

    def fetch(
        self,
        url: str,
        total_timeout: float,
        max_retries: int,
        retry_delay: float,
    ) -> bytes:
        """Fetch ``url`` with up to ``max_retries`` retries inside ``total_timeout``.

        Raises:
            FetchError: the last attempt's error, or FetchTimeout if the
                budget was gone before any attempt could run.
        """
        start = self._clock()
        last_error: Optional[FetchError] = None

        for attempt in range(max_retries + 1):
            remaining = total_timeout - (self._clock() - start)
            if remaining <= 0:
                break

            try:
                return self.fetch_once(url, remaining)
            except FetchError as exc:
                last_error = exc
                logger.debug("Attempt %d/%d for %s failed: %s", attempt + 1, max_retries + 1, url, exc)

            # No pause after the last attempt or once the budget is spent
            if attempt < max_retries:
                remaining = total_timeout - (self._clock() - start)
                pause = min(retry_delay, remaining)
                if pause > 0:
                    self._sleep(pause)

        if last_error is not None:
            raise last_error
        raise FetchTimeout(f"Fetch failed after {total_timeout:g}s: {url}", url)

    def close(self) -> None:
        self.session.close()
