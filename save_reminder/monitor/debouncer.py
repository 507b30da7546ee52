"""Turns bursts of raw file events into a single settled save.

A game writes a save as several files in quick succession. Each qualifying
event restarts a quiet-period timer; only when the timer runs out without
interruption is a SaveCandidate handed on.
"""

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from save_reminder.alarm.scheduler import format_seconds
from save_reminder.alarm.timers import TimerFactory, TimerHandle, start_thread_timer
from save_reminder.backup.materializer import SaveCandidate
from save_reminder.monitor.event_source import EventOp, RawEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WatchTarget:
    """The save entity: entries of ``parent`` whose name starts with ``name``."""
    parent: Path
    name: str

    @property
    def root(self) -> Path:
        return self.parent / self.name

    def _first_component(self, path: str | Path) -> str | None:
        try:
            rel = Path(path).relative_to(self.parent)
        except ValueError:
            return None
        return rel.parts[0] if rel.parts else None

    def matches(self, path: str | Path) -> bool:
        first = self._first_component(path)
        return first is not None and first.startswith(self.name)

    def entity_path(self, path: str | Path) -> Path:
        """The top-level entry under ``parent`` that ``path`` belongs to."""
        first = self._first_component(path)
        if first is None:
            raise ValueError(f"{path} is not inside {self.parent}")
        return self.parent / first


@dataclass
class PendingSave:
    path: Path
    fire_at: float


class Debouncer:
    """Coalesces matching RawEvents into SaveCandidates.

    ``on_settle`` runs on the timer thread with ``lock`` held, so it is
    serialized with event handling and with the alarm scheduler when they
    share the lock.

    The quiet period is measured from each event's own timestamp, so
    ``clock`` must run on the same time base as the event source
    (``time.monotonic`` by default).
    """

    def __init__(
        self,
        target: WatchTarget,
        debounce_delay: float,
        on_settle: Callable[[SaveCandidate], None],
        add_watch: Callable[[Path], bool] | None = None,
        lock=None,
        start_timer: TimerFactory = start_thread_timer,
        clock=time.monotonic,
        verbose: bool = False,
    ):
        self.target = target
        self.debounce_delay = debounce_delay
        self.on_settle = on_settle
        self.add_watch = add_watch
        self.verbose = verbose
        self._lock = lock or threading.RLock()
        self._start_timer = start_timer
        self._clock = clock

        self._pending: PendingSave | None = None
        self._timer: TimerHandle | None = None
        self._generation = 0
        self._stopped = False
        self.emitted = 0

    @property
    def pending(self) -> PendingSave | None:
        with self._lock:
            return self._pending

    def on_raw_event(self, event: RawEvent):
        if self.verbose:
            logger.debug("File event detected: %s (op: %s)", event.path, event.op.value)

        if not self.target.matches(event.path):
            if self.verbose:
                logger.debug("Ignored (not quicksave): %s", event.path.name)
            return
        if event.op is EventOp.REMOVED:
            return

        with self._lock:
            if self._stopped:
                return

            if event.path.is_dir():
                # Structural: the folder itself, not a save inside it
                if event.op is EventOp.CREATED and event.path == self.target.root:
                    logger.info("Quicksave folder created, adding to watcher...")
                    if self.add_watch is not None:
                        self.add_watch(event.path)
                return

            entity = self.target.entity_path(event.path)
            self._cancel_locked()
            generation = self._generation
            fire_at = event.timestamp + self.debounce_delay
            self._pending = PendingSave(path=entity, fire_at=fire_at)
            self._timer = self._start_timer(
                max(0.0, fire_at - self._clock()), lambda: self._on_timer(generation)
            )

        logger.info(
            "Detected change in quicksave, waiting %s before processing...",
            format_seconds(self.debounce_delay),
        )

    def _cancel_locked(self):
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = None

    def _on_timer(self, generation: int):
        with self._lock:
            if generation != self._generation or self._pending is None:
                return
            pending = self._pending
            self._pending = None
            self._timer = None

            logger.info("Processing quicksave: %s", pending.path)
            if not pending.path.exists():
                logger.info("Quicksave no longer exists, skipping backup")
                return

            self.emitted += 1
            try:
                self.on_settle(SaveCandidate(path=pending.path, timestamp=pending.fire_at))
            except Exception:
                logger.exception("Error processing quicksave %s", pending.path)

    def stop(self):
        """Drop any open window. No further candidates are emitted."""
        with self._lock:
            self._cancel_locked()
            self._stopped = True
