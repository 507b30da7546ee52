"""Shared fixtures: a manual clock that drives timers deterministically."""

import threading
import time
from pathlib import Path

import pytest

from save_reminder.alarm.alarm_sink import AlarmSink
from save_reminder.backup.backup_config import QUICKSAVE_NAME


class ManualTimer:
    def __init__(self, fire_at, seq, callback):
        self.fire_at = fire_at
        self.seq = seq
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class ManualClock:
    """Virtual time. Timers only fire inside ``advance()``."""

    def __init__(self, start=0.0):
        self.now = start
        self.timers: list[ManualTimer] = []
        self._seq = 0

    def __call__(self):
        return self.now

    def start_timer(self, delay, callback):
        self._seq += 1
        timer = ManualTimer(self.now + delay, self._seq, callback)
        self.timers.append(timer)
        return timer

    def live_timers(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [t for t in self.live_timers() if t.fire_at <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.fire_at, t.seq))
            self.now = timer.fire_at
            timer.fired = True
            timer.callback()
        self.now = target

    def advance_to(self, when):
        self.advance(when - self.now)


class RecordingSink(AlarmSink):
    """Remembers the clock value of every play()."""

    volume = 100

    def __init__(self, clock=None):
        self.clock = clock
        self.plays = []
        self.on_play = None

    def play(self):
        self.plays.append(self.clock() if self.clock else None)
        if self.on_play is not None:
            self.on_play()


class FakeEventSource:
    """Stands in for EventSource; the stream blocks until closed."""

    def __init__(self, on_error=None):
        self.watched = []
        self.added = []
        self.close_calls = 0
        self._closed = threading.Event()

    def watch(self, directory):
        self.watched.append(Path(directory))
        return self._stream()

    def _stream(self):
        self._closed.wait()
        yield from ()

    def add_watch(self, directory):
        self.added.append(Path(directory))
        return True

    def close(self):
        self.close_calls += 1
        self._closed.set()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def sink(clock):
    return RecordingSink(clock)


@pytest.fixture
def saves_dir(tmp_path):
    d = tmp_path / "saves"
    d.mkdir()
    return d


@pytest.fixture
def quicksave_dir(saves_dir):
    d = saves_dir / QUICKSAVE_NAME
    d.mkdir()
    (d / "savegame.sav").write_bytes(b"SAVE" * 64)
    (d / "globals.xml").write_text("<globals/>")
    return d


def _wait_until(predicate, timeout=5.0, interval=0.05):
    """Poll until predicate() is truthy or the timeout expires."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def fake_sources():
    """Factory for FakeEventSource; every instance made is kept in .made."""
    made = []

    def factory(on_error=None):
        source = FakeEventSource(on_error=on_error)
        made.append(source)
        return source

    factory.made = made
    return factory


@pytest.fixture
def make_sink():
    return RecordingSink
