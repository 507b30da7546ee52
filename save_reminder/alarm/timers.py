"""One-shot timer primitive shared by the debouncer and the alarm scheduler.

Both components take a ``start_timer(delay, callback)`` factory so tests can
swap in a manual clock. The default runs each callback on a daemon
``threading.Timer`` thread.
"""

import threading
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def start_thread_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    """Start a daemon timer. Cancelling after it fired is a no-op."""
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer
