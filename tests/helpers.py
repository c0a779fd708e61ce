from __future__ import annotations

import datetime as dt
from typing import Any, List, Optional

import requests

from jenkins_build_time_check import encode_timestamp


NOW = dt.datetime(2024, 3, 1, 12, 0, 0, tzinfo=dt.timezone.utc)


def started(seconds_ago: int, now: dt.datetime = NOW) -> int:
    return int(encode_timestamp(now - dt.timedelta(seconds=seconds_ago)))


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, text: Optional[str] = None):
        self.payload = payload
        self.status_code = status_code
        self.text = text
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error: Not Found")

    def json(self) -> Any:
        if self.text is not None:
            raise ValueError(f"Expecting value: {self.text[:20]!r}")
        return self.payload


class FakeGet:
    """Stands in for requests.get, recording each call."""

    def __init__(self, response: Optional[FakeResponse] = None, error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.calls: List[tuple] = []

    def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response
