"""Inactivity alarm state machine.

    IDLE       -> no alarm timer running (startup, or after shutdown)
    ARMED      -> waiting for alarm_interval since the last confirmed save
    REPEATING  -> first alarm fired, re-alarming every repeat_interval

``confirm_save()`` is the only external transition and always lands in
ARMED. Timer expirations drive the rest. Every timer callback carries the
generation it was scheduled under; a confirm or shutdown bumps the
generation so a callback that lost the race to its own cancellation does
nothing.
"""

import enum
import logging
import threading
import time
from datetime import datetime

from save_reminder.alarm.alarm_sink import AlarmSink, MutedSink
from save_reminder.alarm.timers import TimerFactory, TimerHandle, start_thread_timer

logger = logging.getLogger(__name__)


class AlarmState(enum.Enum):
    IDLE = "idle"
    ARMED = "armed"
    REPEATING = "repeating"


class AlarmScheduler:
    """Arms a one-shot alarm, then a repeating one, after each save.

    Parameters
    ----------
    sink:
        AlarmSink invoked on each firing. Not invoked at all when
        ``volume`` is 0.
    alarm_interval / repeat_interval:
        Seconds before the first alarm and between repeats.
    lock:
        Shared mutual-exclusion domain. Pass the coordinator's lock so
        timer callbacks serialize with the debouncer and event loop.
    start_timer / clock:
        Injection points for tests.
    """

    def __init__(
        self,
        sink: AlarmSink,
        alarm_interval: float,
        repeat_interval: float,
        volume: int = 100,
        lock=None,
        start_timer: TimerFactory = start_thread_timer,
        clock=time.monotonic,
    ):
        self.sink = sink
        self.alarm_interval = alarm_interval
        self.repeat_interval = repeat_interval
        self.volume = volume
        self._lock = lock or threading.RLock()
        self._start_timer = start_timer
        self._clock = clock

        self._state = AlarmState.IDLE
        self._timer: TimerHandle | None = None
        self._generation = 0
        self._next_fire_at: float | None = None
        self._last_save_at: float | None = None
        self._shut_down = False
        self._playing = False
        self.fire_count = 0
        self.skipped_plays = 0
        self.last_save_time: datetime | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> AlarmState:
        with self._lock:
            return self._state

    @property
    def next_fire_at(self) -> float | None:
        """Clock value of the next scheduled firing, or None."""
        with self._lock:
            return self._next_fire_at

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def confirm_save(self):
        """A backup succeeded: restart the inactivity countdown."""
        with self._lock:
            if self._shut_down:
                logger.debug("Ignoring confirmed save after shutdown")
                return
            self._cancel_locked()
            now = self._clock()
            self._last_save_at = now
            self.last_save_time = datetime.now()
            self._state = AlarmState.ARMED
            self._schedule_locked(self.alarm_interval, now + self.alarm_interval,
                                  self._on_first_alarm)
        logger.info(
            "Alarm timer started. Will alert in %s if no new save is made.",
            format_seconds(self.alarm_interval),
        )

    def shutdown(self):
        """Cancel everything. Terminal for the life of the scheduler."""
        with self._lock:
            self._cancel_locked()
            self._state = AlarmState.IDLE
            self._shut_down = True

    # ------------------------------------------------------------------
    # Timer plumbing (all *_locked helpers expect self._lock held)
    # ------------------------------------------------------------------

    def _cancel_locked(self):
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._next_fire_at = None

    def _schedule_locked(self, delay: float, fire_at: float, callback):
        generation = self._generation
        self._next_fire_at = fire_at
        self._timer = self._start_timer(
            delay, lambda: callback(generation, fire_at)
        )

    def _on_first_alarm(self, generation: int, due_at: float):
        with self._lock:
            if generation != self._generation or self._state is not AlarmState.ARMED:
                return
            self._state = AlarmState.REPEATING
            self._timer = None
            self.fire_count += 1
            self._schedule_next_repeat_locked(due_at)
        self._fire()

    def _on_repeat_alarm(self, generation: int, due_at: float):
        with self._lock:
            if generation != self._generation or self._state is not AlarmState.REPEATING:
                return
            self._timer = None
            self.fire_count += 1
            self._schedule_next_repeat_locked(due_at)
        self._fire()

    def _schedule_next_repeat_locked(self, due_at: float):
        # Fixed spacing from the previous due time, not from now
        fire_at = due_at + self.repeat_interval
        delay = max(0.0, fire_at - self._clock())
        self._schedule_locked(delay, fire_at, self._on_repeat_alarm)

    def _fire(self):
        """Invoke the sink outside the lock so a save can still land."""
        since = ""
        if self._last_save_at is not None:
            since = f" It's been {format_seconds(self._clock() - self._last_save_at)} since last save."
        logger.warning("*** ALARM: Time to save!%s ***", since)

        if self.volume == 0 or isinstance(self.sink, MutedSink):
            logger.debug("Alarm muted, not playing")
            return
        with self._lock:
            if self._playing:
                # One playback at a time
                self.skipped_plays += 1
                logger.warning("Previous alarm still playing, skipping this one")
                return
            self._playing = True
        try:
            self.sink.play()
        except Exception:
            logger.exception("Alarm sink %s failed", self.sink.describe())
        finally:
            with self._lock:
                self._playing = False


def format_seconds(seconds: float) -> str:
    """Render a duration the way it is written in the config: 1h2m3s."""
    total = int(round(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return "".join(parts)
