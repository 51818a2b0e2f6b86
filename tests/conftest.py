"""Shared test fixtures for VoxGate Recorder tests."""

import threading
import time

import numpy as np
import pytest

from voxgate_recorder.core.storage import ArtifactKind, StorageAdapter


def tone(db: float, samples: int = 800) -> bytes:
    """Constant-amplitude int16 chunk whose loudness is roughly *db*."""
    amplitude = int(round(10 ** (db / 20)))
    return np.full(samples, amplitude, dtype=np.int16).tobytes()


class FakeStorage(StorageAdapter):
    """In-memory backend recording every store call.

    Args:
        delays: Seconds to sleep per timestamp before storing.
        failures: Number of failing calls per timestamp (``-1`` = always fail).
    """

    def __init__(self, delays=None, failures=None):
        self.delays = dict(delays or {})
        self.failures = dict(failures or {})
        self.events = []
        self.stored = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def store_audio(self, buffer, timestamp):
        return self._store(ArtifactKind.AUDIO, buffer, timestamp)

    def store_image(self, buffer, kind, timestamp):
        return self._store(ArtifactKind(kind), buffer, timestamp)

    def _store(self, kind, buffer, timestamp):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.events.append(("start", timestamp))
        try:
            time.sleep(self.delays.get(timestamp, 0))
            remaining = self.failures.get(timestamp, 0)
            if remaining:
                if remaining > 0:
                    self.failures[timestamp] = remaining - 1
                raise OSError(f"backend unavailable for {timestamp}")
            self.stored.append((kind, buffer, timestamp))
            return f"memory://{timestamp}"
        finally:
            with self._lock:
                self.active -= 1
                self.events.append(("end", timestamp))

    @property
    def stored_timestamps(self):
        return [timestamp for _, _, timestamp in self.stored]


class FakeTimer:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeLoop:
    """Manual clock exposing the ``time``/``call_later`` subset the detector uses."""

    def __init__(self):
        self.now = 0.0
        self.timers = []

    def time(self):
        return self.now

    def call_later(self, delay, callback):
        timer = FakeTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [t for t in self.timers if not t.cancelled and t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.timers.remove(timer)
            self.now = timer.when
            timer.callback()
        self.now = target


@pytest.fixture
def fake_storage():
    """Factory for in-memory storage backends."""
    return FakeStorage


@pytest.fixture
def fake_loop():
    return FakeLoop()


@pytest.fixture
def temp_output_dir(tmp_path):
    """Provide temporary output directory for tests."""
    output_dir = tmp_path / "out"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir
