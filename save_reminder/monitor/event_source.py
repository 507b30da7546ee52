"""Raw file-change notifications from watchdog.

The observer thread pushes events onto a queue; a single consumer iterates
them through ``EventSource.events()``. Watch failures travel on a side
channel (log + ``on_error`` callback) and do not end the stream unless the
observer thread itself has died.
"""

import enum
import logging
import os
import queue
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.5

_CLOSED = object()


class EventOp(enum.Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class RawEvent:
    path: Path
    op: EventOp
    timestamp: float
    is_directory: bool = False


@dataclass(frozen=True)
class WatchError:
    message: str
    exception: BaseException | None = None


class _RawEventHandler(FileSystemEventHandler):
    """Translates watchdog callbacks into RawEvents on the source queue."""

    def __init__(self, source: "EventSource"):
        super().__init__()
        self.source = source

    def _push(self, path, op: EventOp, is_directory: bool):
        self.source.emit(RawEvent(
            path=Path(os.fsdecode(path)),
            op=op,
            timestamp=self.source.clock(),
            is_directory=is_directory,
        ))

    def on_created(self, event):
        try:
            self._push(event.src_path, EventOp.CREATED, event.is_directory)
        except Exception as exc:
            self.source.report_error(WatchError(f"created event for {event.src_path}", exc))

    def on_modified(self, event):
        try:
            self._push(event.src_path, EventOp.MODIFIED, event.is_directory)
        except Exception as exc:
            self.source.report_error(WatchError(f"modified event for {event.src_path}", exc))

    def on_deleted(self, event):
        try:
            self._push(event.src_path, EventOp.REMOVED, event.is_directory)
        except Exception as exc:
            self.source.report_error(WatchError(f"deleted event for {event.src_path}", exc))

    def on_moved(self, event):
        # A rename is the old name going away and the new one appearing
        try:
            self._push(event.src_path, EventOp.REMOVED, event.is_directory)
            self._push(event.dest_path, EventOp.CREATED, event.is_directory)
        except Exception as exc:
            self.source.report_error(WatchError(f"moved event for {event.src_path}", exc))


class EventSource:
    """A live, single-use watch over one or more directories.

    Usage::

        source = EventSource()
        for event in source.watch("/saves"):
            ...
        source.close()   # from any thread; ends the loop above
    """

    def __init__(
        self,
        observer_factory=Observer,
        on_error: Callable[[WatchError], None] | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock=time.monotonic,
    ):
        self.clock = clock
        self._observer = observer_factory()
        self._observer.daemon = True
        self._handler = _RawEventHandler(self)
        self._queue: queue.Queue = queue.Queue()
        self._watches: dict[Path, object] = {}
        self._lock = threading.Lock()
        self._started = False
        self._closed = False
        self.on_error = on_error
        self.poll_interval = poll_interval
        self.errors: list[WatchError] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def watch(self, directory: str | Path) -> Iterator[RawEvent]:
        """Start watching ``directory`` and return the event stream.

        Raises OSError if the directory cannot be watched and RuntimeError
        if the source was already closed.
        """
        path = Path(directory)
        with self._lock:
            if self._closed:
                raise RuntimeError("event source is closed")
            self._schedule_locked(path)
            if not self._started:
                self._observer.start()
                self._started = True
        logger.info("Watching: %s", path)
        return self.events()

    def add_watch(self, directory: str | Path) -> bool:
        """Add a directory to the live watch. Returns success.

        Re-adding a path replaces its watch, which revives it after the
        directory was deleted and recreated.
        """
        path = Path(directory)
        with self._lock:
            if self._closed:
                return False
            old = self._watches.pop(path, None)
            if old is not None:
                try:
                    self._observer.unschedule(old)
                except (KeyError, ValueError):
                    pass
            try:
                self._schedule_locked(path)
            except OSError as exc:
                failed = WatchError(f"failed to add {path} to watcher", exc)
            else:
                failed = None
        if failed is not None:
            self.report_error(failed)
            return False
        logger.info("Watching: %s", path)
        return True

    def _schedule_locked(self, path: Path):
        if not path.is_dir():
            raise FileNotFoundError(f"not a directory: {path}")
        self._watches[path] = self._observer.schedule(
            self._handler, str(path), recursive=False
        )

    def emit(self, event: RawEvent):
        if not self._closed:
            self._queue.put(event)

    def report_error(self, error: WatchError):
        if error.exception is not None:
            logger.error("Watcher error: %s: %s", error.message, error.exception)
        else:
            logger.error("Watcher error: %s", error.message)
        self.errors.append(error)
        if self.on_error is not None:
            try:
                self.on_error(error)
            except Exception:
                logger.exception("Watcher error callback failed")

    def events(self) -> Iterator[RawEvent]:
        """Yield events until closed, or until the observer thread dies."""
        while True:
            try:
                item = self._queue.get(timeout=self.poll_interval)
            except queue.Empty:
                if self._closed:
                    return
                if self._started and not self._observer.is_alive():
                    self.report_error(WatchError("file watcher stopped unexpectedly"))
                    return
                continue
            if item is _CLOSED:
                return
            yield item

    def close(self):
        """Stop the observer and end the stream. Safe to call repeatedly."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            started = self._started
        self._queue.put(_CLOSED)
        self._observer.stop()
        if started and self._observer is not threading.current_thread():
            self._observer.join(timeout=5)
        logger.debug("Event source closed")
