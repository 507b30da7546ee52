"""Save reminder: watches the quicksave, backs it up, nags when it goes stale.

Event flow:

    EventSource --RawEvent--> Debouncer --SaveCandidate--> BackupMaterializer
                                                               |
                                                      success  v
                                                AlarmScheduler.confirm_save()
                                                               |
                                                  timeouts     v
                                                          AlarmSink

One RLock covers the debounce window, the alarm state and every timer
handle. The event stream is consumed on a single background thread.

Usage:
    python -m save_reminder.monitor.reminder
    python -m save_reminder.monitor.reminder --saves-dir ~/saves -c config/config.json
"""

import argparse
import logging
import os
import platform
import signal
import sqlite3
import subprocess
import sys
import threading
import time
from pathlib import Path

from save_reminder.alarm.alarm_sink import AlarmSink, make_alarm_sink
from save_reminder.alarm.scheduler import AlarmScheduler
from save_reminder.alarm.timers import TimerFactory, start_thread_timer
from save_reminder.backup.backup_config import (
    BACKUP_FOLDER_NAME,
    INDEX_DB_NAME,
    QUICKSAVE_NAME,
)
from save_reminder.backup.materializer import BackupError, BackupMaterializer, SaveCandidate
from save_reminder.config import DEFAULT_CONFIG_PATH, Config, load_config, log_config
from save_reminder.database.backup_index import BackupIndex
from save_reminder.monitor.debouncer import Debouncer, WatchTarget
from save_reminder.monitor.event_source import EventSource
from save_reminder.paths import default_saves_path, resolve_path

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """A precondition for running is not met. Fatal."""


class SaveReminder:
    """Owns the debouncer, scheduler, materializer and event source."""

    def __init__(
        self,
        saves_path: str | Path,
        config: Config,
        sink: AlarmSink | None = None,
        sound_base_dir: str | Path | None = None,
        use_index: bool = True,
        event_source_factory=EventSource,
        start_timer: TimerFactory = start_thread_timer,
        clock=time.monotonic,
    ):
        self.saves_path = Path(saves_path)
        self.backups_path = self.saves_path / BACKUP_FOLDER_NAME
        self.config = config
        self.use_index = use_index
        self._event_source_factory = event_source_factory

        self._lock = threading.RLock()
        self._shutdown_lock = threading.Lock()
        self._shut_down = False
        self.stopped = threading.Event()

        self.target = WatchTarget(self.saves_path, QUICKSAVE_NAME)
        self.sink = sink or make_alarm_sink(config, sound_base_dir)
        self.scheduler = AlarmScheduler(
            sink=self.sink,
            alarm_interval=config.alarm_interval,
            repeat_interval=config.repeat_interval,
            volume=config.alarm_volume,
            lock=self._lock,
            start_timer=start_timer,
            clock=clock,
        )
        self.debouncer = Debouncer(
            target=self.target,
            debounce_delay=config.debounce_delay,
            on_settle=self._on_settle,
            add_watch=self._add_watch,
            lock=self._lock,
            start_timer=start_timer,
            clock=clock,
            verbose=config.verbose_logging,
        )

        self.index: BackupIndex | None = None
        self.materializer: BackupMaterializer | None = None
        self.event_source: EventSource | None = None
        self._consumer: threading.Thread | None = None
        self.records = []

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def start(self):
        """Check preconditions, start watching and consuming events.

        Raises StartupError when the saves folder is missing, the backups
        folder cannot be created, or the watch cannot be started.
        """
        if not self.saves_path.is_dir():
            raise StartupError(
                f"Saves folder does not exist: {self.saves_path}\n"
                "Please make sure:\n"
                "1. Neverwinter Nights 2 has been launched at least once\n"
                "2. You have created a multiplayer save at least once\n"
                "3. The folder path is correct"
            )

        try:
            self.backups_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StartupError(f"Failed to create backups folder: {exc}") from exc

        if self.use_index:
            try:
                self.index = BackupIndex(self.backups_path / INDEX_DB_NAME)
            except sqlite3.Error as exc:
                logger.warning("Backup index unavailable, continuing without it: %s", exc)
        self.materializer = BackupMaterializer(self.backups_path, index=self.index)
        if self.index is not None:
            self._log_last_backup()

        quicksave = self.target.root
        if quicksave.is_dir():
            logger.info("Found quicksave folder: %s", quicksave)
        else:
            logger.warning("Quicksave folder does not exist yet: %s", quicksave)
            logger.warning("The watcher will start monitoring once the folder is created.")

        try:
            self.event_source = self._event_source_factory()
            stream = self.event_source.watch(self.saves_path)
        except OSError as exc:
            raise StartupError(f"Failed to add saves folder to watcher: {exc}") from exc

        if quicksave.is_dir():
            self.event_source.add_watch(quicksave)

        self._log_save_folders()

        self._consumer = threading.Thread(
            target=self._consume,
            args=(stream,),
            daemon=True,
            name="save-events",
        )
        self._consumer.start()
        logger.info("File watcher initialized. Waiting for save file changes...")

    def _log_last_backup(self):
        try:
            latest = self.index.get_backups(limit=1)
            total = self.index.count()
        except sqlite3.Error as exc:
            logger.warning("Could not read backup index: %s", exc)
            return
        if latest:
            logger.info("Last backup: %s (%s), %d recorded",
                        latest[0]["destination_path"], latest[0]["timestamp"], total)
        else:
            logger.info("No backups recorded yet")

    def _log_save_folders(self):
        logger.info("Current save folders:")
        try:
            entries = sorted(os.scandir(self.saves_path), key=lambda e: e.name)
        except OSError as exc:
            logger.warning("Could not read folder contents: %s", exc)
            return
        folders = [e.name for e in entries if e.is_dir() and e.name != BACKUP_FOLDER_NAME]
        if not folders:
            logger.info("  (folder is empty)")
        for name in folders:
            logger.info("  - %s (folder)", name)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def _consume(self, stream):
        for event in stream:
            try:
                self.debouncer.on_raw_event(event)
            except Exception:
                logger.exception("Error handling event for %s", event.path)
        if not self._shut_down:
            logger.error("File event stream ended, shutting down")
            self.shutdown()

    def _add_watch(self, path: Path) -> bool:
        if self.event_source is None:
            return False
        return self.event_source.add_watch(path)

    def _on_settle(self, candidate: SaveCandidate):
        """Back up a settled save and, only if that worked, reset the alarm."""
        if self.materializer is None:
            return
        try:
            record = self.materializer.backup(candidate)
        except BackupError as exc:
            logger.error("Error creating backup: %s", exc)
            return
        self.records.append(record)
        self.scheduler.confirm_save()
        logger.info("Save processed successfully. Alarm timer reset.")

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def shutdown(self):
        """Cancel all timers and close the watch. Idempotent."""
        with self._shutdown_lock:
            if self._shut_down:
                return
            self._shut_down = True

        self.debouncer.stop()
        self.scheduler.shutdown()
        if self.event_source is not None:
            self.event_source.close()
        if self._consumer is not None and self._consumer is not threading.current_thread():
            self._consumer.join(timeout=5)
        if self.index is not None:
            self.index.close()
        self.stopped.set()
        logger.info("Save reminder stopped.")


def pause_before_exit():
    """Keep a double-clicked Windows console open so errors can be read."""
    if platform.system() != "Windows":
        return
    try:
        subprocess.run(["cmd", "/C", "pause"])
    except OSError:
        pass


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Quicksave backup and save reminder")
    parser.add_argument(
        "-c", "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to config.json (default: config/config.json)",
    )
    parser.add_argument(
        "--saves-dir",
        default=None,
        help="Saves folder to watch (default: the game's multiplayer saves folder)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument(
        "--no-index",
        action="store_true",
        help="Do not record backups in backups/index.db",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config_path = Path(args.config)
    config = load_config(config_path)
    if config.verbose_logging:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled: all file events will be logged")

    saves_path = resolve_path(args.saves_dir) if args.saves_dir else default_saves_path()
    logger.info("Save reminder starting...")
    logger.info("Watching folder: %s", saves_path)
    logger.info("Configuration loaded from: %s", config_path)
    log_config(config)

    reminder = SaveReminder(
        saves_path=saves_path,
        config=config,
        sound_base_dir=config_path.parent,
        use_index=not args.no_index,
    )
    logger.info("Alarm sound: %s", reminder.sink.describe())

    stop_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Received signal %s, shutting down...", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        reminder.start()
    except StartupError as exc:
        for line in str(exc).splitlines():
            logger.error(line)
        reminder.shutdown()
        pause_before_exit()
        return 1

    logger.info("Press Ctrl+C to exit")
    try:
        while not stop_event.is_set() and not reminder.stopped.is_set():
            stop_event.wait(timeout=1.0)
    finally:
        reminder.shutdown()
    logger.info("Goodbye!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
