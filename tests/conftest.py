from __future__ import annotations

import pytest

from fors import Fors
from fors.stream.hls.hls import HLSStreamWorker


class BufferSink:
    """In-memory sink which records every flush."""

    def __init__(self):
        self.data = b""
        self.flushes = 0

    def write(self, data: bytes) -> None:
        self.data += data

    def flush(self) -> None:
        self.flushes += 1


@pytest.fixture()
def session():
    session = Fors()
    yield session
    session.http.close()


@pytest.fixture()
def sink():
    return BufferSink()


@pytest.fixture()
def waits(monkeypatch):
    """Makes the worker's waits return immediately and records the requested intervals."""
    intervals = []

    def wait(self, time):
        intervals.append(time)
        return not self.closed

    monkeypatch.setattr(HLSStreamWorker, "wait", wait)

    return intervals


@pytest.fixture(autouse=True)
def _cache_home(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
