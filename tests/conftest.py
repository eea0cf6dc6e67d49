from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
import requests

from scrobble_info import ScrobbleInfo, Track


class FakeSession:
    """Stands in for requests.Session; replays scripted outcomes for post().

    An outcome is a status code, a (status, body) tuple, or an exception to raise.
    Once the script runs out every call gets `default`.
    """

    def __init__(self, *outcomes, default=200, delay: float = 0):
        self.outcomes = list(outcomes)
        self.default = default
        self.delay = delay  # seconds each post() takes
        self.posts: list[dict] = []
        self.posted = threading.Event()

    def post(self, url, data=None, auth=None, headers=None, timeout=None):
        self.posts.append(dict(url=url, data=data, auth=auth, headers=headers, timeout=timeout))
        self.posted.set()
        if self.delay:
            time.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        status, body = outcome if isinstance(outcome, tuple) else (outcome, "")
        return SimpleNamespace(status_code=status, text=body)

    @property
    def payloads(self) -> list[str]:
        return [p["data"].decode("utf-8") for p in self.posts]


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_info(title: str = "'39", artists=("Queen",), **track_kwargs) -> ScrobbleInfo:
    return ScrobbleInfo(
        scrobble_start_timestamp=utc(2000, 1, 1, 23, 12, 33),
        scrobble_end_timestamp=utc(2001, 2, 3, 12, 10, 4),
        scrobble_duration=1001,
        track=Track(title=title, artists=artists, **track_kwargs),
    )


@pytest.fixture
def queen_scrobble() -> ScrobbleInfo:
    return make_info(album_title="A Night at the Opera", duration_millis=12)


@pytest.fixture
def data_path(tmp_path) -> str:
    return str(tmp_path / "data" / "scrobbles.jsonl")


@pytest.fixture
def network_down():
    return requests.ConnectionError("connection refused")
