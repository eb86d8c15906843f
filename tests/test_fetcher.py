"""Tests for the budgeted-retry fetcher."""

from __future__ import annotations

import gzip
import io
from unittest.mock import MagicMock

import pytest
import requests
import urllib3
from requests.structures import CaseInsensitiveDict

from hlsrec.ingest.fetcher import (
    USER_AGENT,
    FetchError,
    FetchTimeout,
    HTTPStatusError,
    RetryingFetcher,
    build_session,
)

URL = "https://cdn.example.com/live/index.m3u8"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code: int = 200, chunks=(b"",), on_chunk=None) -> None:
        self.status_code = status_code
        self.chunks = list(chunks)
        self.on_chunk = on_chunk

    def iter_content(self, chunk_size: int = 1):
        for chunk in self.chunks:
            if self.on_chunk:
                self.on_chunk()
            yield chunk

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def _fetcher(session, clock: FakeClock) -> RetryingFetcher:
    return RetryingFetcher(session, clock=clock, sleep=clock.sleep)


class TestFetchOnce:
    def test_returns_joined_body(self):
        """Streamed chunks are joined and the request is made with stream=True."""
        clock = FakeClock()
        session = MagicMock()
        session.get.return_value = FakeResponse(chunks=[b"#EXT", b"M3U\n"])
        assert _fetcher(session, clock).fetch(URL, 10, 0, 0.5) == b"#EXTM3U\n"
        _, kwargs = session.get.call_args
        assert kwargs["stream"] is True
        assert kwargs["timeout"] == 10

    def test_non_2xx_is_status_error(self):
        """A 404 raises HTTPStatusError carrying status and URL."""
        clock = FakeClock()
        session = MagicMock()
        session.get.return_value = FakeResponse(status_code=404)
        with pytest.raises(HTTPStatusError) as info:
            _fetcher(session, clock).fetch(URL, 10, 0, 0.5)
        assert info.value.status == 404
        assert info.value.url == URL
        assert str(info.value) == f"HTTP 404 for {URL}"

    def test_requests_timeout_becomes_fetch_timeout(self):
        """requests.Timeout maps to FetchTimeout."""
        clock = FakeClock()
        session = MagicMock()
        session.get.side_effect = requests.Timeout("read timed out")
        with pytest.raises(FetchTimeout):
            _fetcher(session, clock).fetch(URL, 10, 0, 0.5)

    def test_connection_error_becomes_fetch_error(self):
        """Connection failures map to a plain FetchError."""
        clock = FakeClock()
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(FetchError) as info:
            _fetcher(session, clock).fetch(URL, 10, 0, 0.5)
        assert not isinstance(info.value, HTTPStatusError)
        assert "refused" in str(info.value)

    def test_slow_body_hits_deadline(self):
        """A trickling body is cut off once the attempt budget is spent."""
        clock = FakeClock()

        def tick():
            clock.now += 3.0

        session = MagicMock()
        session.get.return_value = FakeResponse(chunks=[b"a", b"b", b"c"], on_chunk=tick)
        with pytest.raises(FetchTimeout):
            _fetcher(session, clock).fetch(URL, 5, 0, 0.5)

    def test_gzip_body_is_decompressed(self):
        """A real requests.Response decodes Content-Encoding: gzip while streaming."""
        payload = b"#EXTM3U\n#EXT-X-ENDLIST\n"
        raw = urllib3.HTTPResponse(
            body=io.BytesIO(gzip.compress(payload)),
            headers={"Content-Encoding": "gzip"},
            status=200,
            preload_content=False,
            decode_content=True,
        )
        resp = requests.Response()
        resp.status_code = 200
        resp.raw = raw
        resp.headers = CaseInsensitiveDict(raw.headers)

        session = MagicMock()
        session.get.return_value = resp
        assert _fetcher(session, FakeClock()).fetch(URL, 10, 0, 0.5) == payload


class TestRetryBudget:
    def test_retries_until_success(self):
        """A failed attempt is retried after the retry delay."""
        clock = FakeClock()
        session = MagicMock()
        session.get.side_effect = [
            requests.ConnectionError("reset"),
            FakeResponse(chunks=[b"ok"]),
        ]
        assert _fetcher(session, clock).fetch(URL, 10, 2, 0.5) == b"ok"
        assert session.get.call_count == 2
        assert clock.sleeps == [0.5]

    def test_each_attempt_gets_remaining_budget(self):
        """Each attempt's timeout is what is left of the total budget."""
        clock = FakeClock()

        def failing_get(url, **kwargs):
            clock.now += 1.0
            raise requests.ConnectionError("down")

        session = MagicMock()
        session.get.side_effect = failing_get
        with pytest.raises(FetchError):
            _fetcher(session, clock).fetch(URL, 3.5, 100, 0.5)

        timeouts = [c.kwargs["timeout"] for c in session.get.call_args_list]
        assert timeouts == pytest.approx([3.5, 2.0, 0.5])

    def test_budget_bounds_time_not_retry_count(self):
        """A huge retry count still stops when the budget runs out."""
        clock = FakeClock()

        def failing_get(url, **kwargs):
            clock.now += 1.0
            raise requests.ConnectionError("down")

        session = MagicMock()
        session.get.side_effect = failing_get
        with pytest.raises(FetchError):
            _fetcher(session, clock).fetch(URL, 3.5, 1000, 0.5)

        assert session.get.call_count == 3
        # Overshoot is at most one attempt past the budget
        assert clock.now <= 3.5 + 1.0

    def test_retry_delay_clipped_to_budget(self):
        """The pause between attempts never exceeds the remaining budget."""
        clock = FakeClock()

        def failing_get(url, **kwargs):
            clock.now += 1.0
            raise requests.ConnectionError("down")

        session = MagicMock()
        session.get.side_effect = failing_get
        with pytest.raises(FetchError):
            _fetcher(session, clock).fetch(URL, 2.0, 5, 10.0)
        assert clock.sleeps == [1.0]
        assert session.get.call_count == 1

    def test_no_sleep_after_last_attempt(self):
        """No pause follows the final attempt."""
        clock = FakeClock()
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("down")
        with pytest.raises(FetchError):
            _fetcher(session, clock).fetch(URL, 60, 2, 0.5)
        assert session.get.call_count == 3
        assert clock.sleeps == [0.5, 0.5]

    def test_last_error_is_raised(self):
        """The error from the last attempt is the one raised."""
        clock = FakeClock()
        session = MagicMock()
        session.get.side_effect = [
            requests.ConnectionError("first"),
            FakeResponse(status_code=503),
        ]
        with pytest.raises(HTTPStatusError) as info:
            _fetcher(session, clock).fetch(URL, 60, 1, 0.0)
        assert info.value.status == 503

    def test_spent_budget_raises_timeout_without_request(self):
        """A zero budget raises FetchTimeout without touching the network."""
        clock = FakeClock()
        session = MagicMock()
        with pytest.raises(FetchTimeout):
            _fetcher(session, clock).fetch(URL, 0, 3, 0.5)
        session.get.assert_not_called()


class TestBuildSession:
    def test_headers(self):
        """The session sends our User-Agent and accepts gzip."""
        session = build_session()
        assert session.headers["User-Agent"] == USER_AGENT
        assert session.headers["Accept-Encoding"] == "gzip, identity"
        assert session.verify is True

    def test_insecure_disables_verification(self):
        """Insecure mode turns off certificate verification."""
        session = build_session(insecure=True)
        assert session.verify is False
