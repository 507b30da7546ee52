"""Locating the saves directory."""

import logging
import os
import platform
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

GAME_SAVES_SUBPATH = Path("Neverwinter Nights 2") / "saves" / "multiplayer"


def get_documents_folder() -> Path:
    """Return the user's Documents folder.

    On Windows the shell is asked for the real location, which may have been
    moved off the default. Falls back to ``%USERPROFILE%\\Documents``.
    """
    if platform.system() != "Windows":
        return Path.home() / "Documents"

    try:
        result = subprocess.run(
            ["powershell", "-Command", "[Environment]::GetFolderPath('MyDocuments')"],
            capture_output=True,
            text=True,
            check=True,
        )
        path = result.stdout.strip()
        if path:
            return Path(path)
        logger.warning("Documents folder path is empty, using default")
    except (OSError, subprocess.CalledProcessError) as exc:
        logger.warning("Could not determine Documents folder, using default: %s", exc)
    return Path(os.environ.get("USERPROFILE", str(Path.home()))) / "Documents"


def default_saves_path() -> Path:
    return get_documents_folder() / GAME_SAVES_SUBPATH


def resolve_path(path_str: str) -> Path:
    return Path(os.path.expanduser(os.path.expandvars(path_str))).resolve()
