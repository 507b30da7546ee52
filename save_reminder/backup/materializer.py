"""Timestamped save backups.

Backup structure:
    saves/
    +-- 000000 - quicksave/              <- watched entity (folder variant)
    +-- backups/
        +-- 2025-02-01_14-30-00 - 000000 - quicksave/
        |   +-- ... mirrored tree ...
        +-- 2025-02-01_14-35-12/
        |   +-- 000000 - quicksave.sav   <- single-file variant
        +-- index.db

Two saves within the same second land in the same directory and the later
one overwrites the earlier.
"""

import contextlib
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from save_reminder.backup.backup_config import (
    BACKUP_DIR_FORMAT,
    BACKUP_DIR_MODE,
    BACKUP_FILE_MODE,
    PARTIAL_SUFFIX,
)

logger = logging.getLogger(__name__)


class BackupError(Exception):
    """A backup could not be completed. The save must not count as confirmed."""

    def __init__(self, message: str, source_path: str | Path | None = None):
        super().__init__(message)
        self.source_path = str(source_path) if source_path is not None else None


@dataclass(frozen=True)
class SaveCandidate:
    """A settled save, ready to be backed up."""
    path: Path
    timestamp: float


@dataclass(frozen=True)
class BackupRecord:
    """Result of one successful backup."""
    source_path: str
    destination_path: str
    timestamp: str
    files_copied: int
    bytes_copied: int


def copy_file(src: str | Path, dst: str | Path) -> int:
    """Copy one file all-or-nothing. Returns the number of bytes written.

    The full contents are read first, written to a ``.partial`` sibling and
    renamed into place only when the write is complete.
    """
    src, dst = Path(src), Path(dst)
    tmp = dst.with_name(dst.name + PARTIAL_SUFFIX)
    try:
        data = src.read_bytes()
    except OSError as exc:
        raise BackupError(f"error reading source file {src}: {exc}", src) from exc

    try:
        with open(tmp, "wb") as f:
            written = f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if written != len(data):
            raise OSError(f"short write ({written} of {len(data)} bytes)")
        os.replace(tmp, dst)
    except OSError as exc:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise BackupError(f"error writing backup file {dst}: {exc}", src) from exc

    with contextlib.suppress(OSError):
        os.chmod(dst, BACKUP_FILE_MODE)
    return len(data)


class BackupMaterializer:
    """Snapshots the watched entity into the backups directory.

    Usage::

        materializer = BackupMaterializer("/saves/backups")
        record = materializer.backup(SaveCandidate(Path("/saves/000000 - quicksave"), time.monotonic()))
    """

    def __init__(self, backups_path: str | Path, index=None, now=datetime.now):
        self.backups_path = Path(backups_path)
        self.index = index
        self._now = now

    def backup(self, candidate: SaveCandidate) -> BackupRecord:
        """Copy ``candidate.path`` into a fresh timestamp directory.

        Raises BackupError on any I/O failure. A directory tree may be
        left partially copied in that case.
        """
        source = Path(candidate.path)
        try:
            is_dir = source.is_dir()
            if not is_dir and not source.is_file():
                raise FileNotFoundError(f"no such file or directory: {source}")
        except OSError as exc:
            raise BackupError(f"error reading source: {exc}", source) from exc

        ts = self._now()
        stamp = ts.strftime(BACKUP_DIR_FORMAT)

        if is_dir:
            dest = self.backups_path / f"{stamp} - {source.name}"
            files, size = self._copy_tree(source, dest)
        else:
            dest_dir = self.backups_path / stamp
            self._make_dir(dest_dir, source)
            dest = dest_dir / source.name
            files, size = 1, copy_file(source, dest)

        record = BackupRecord(
            source_path=str(source),
            destination_path=str(dest),
            timestamp=ts.isoformat(),
            files_copied=files,
            bytes_copied=size,
        )
        logger.info("Backup created: %s (%d files, %d bytes)", dest, files, size)

        if self.index is not None:
            try:
                self.index.record(record)
            except Exception:
                # The backup itself is on disk; the index is bookkeeping only
                logger.exception("Failed to index backup %s", dest)
        return record

    @staticmethod
    def _make_dir(path: Path, source: Path):
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackupError(f"error creating backup folder {path}: {exc}", source) from exc
        with contextlib.suppress(OSError):
            os.chmod(path, BACKUP_DIR_MODE)

    def _copy_tree(self, src: Path, dst: Path) -> tuple[int, int]:
        self._make_dir(dst, src)
        try:
            entries = sorted(os.scandir(src), key=lambda e: e.name)
        except OSError as exc:
            raise BackupError(f"error reading source directory {src}: {exc}", src) from exc

        files = 0
        size = 0
        for entry in entries:
            target = dst / entry.name
            try:
                entry_is_dir = entry.is_dir()
            except OSError as exc:
                raise BackupError(f"error reading {entry.path}: {exc}", entry.path) from exc
            if entry_is_dir:
                sub_files, sub_size = self._copy_tree(Path(entry.path), target)
                files += sub_files
                size += sub_size
            else:
                size += copy_file(entry.path, target)
                files += 1
        return files, size
