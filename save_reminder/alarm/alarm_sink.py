"""Alarm playback.

The scheduler only knows the ``AlarmSink`` interface. Platform branching
lives here:

    MutedSink     -> volume 0, plays nothing
    BeepSink      -> console/system beep
    PlayFileSink  -> external audio player with volume where supported

Playback is best effort. A missing player binary or a failed command is
logged and never raised to the caller.
"""

import logging
import os
import platform
import subprocess
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

# Beep volume cannot be controlled, so very quiet settings skip it
MIN_BEEP_VOLUME = 10

BEEP_FREQUENCY_HZ = 800
BEEP_DURATION_MS = 500

WMP_SCRIPT = """
$player = New-Object -ComObject WMPlayer.OCX
$player.settings.volume = {volume}
$player.URL = "{path}"
$player.controls.play()
while ($player.playState -eq 3) {{
    Start-Sleep -Milliseconds 100
}}
$player.controls.stop()
$player.close()
"""


def clamp_volume(volume: int) -> int:
    return max(0, min(100, int(volume)))


def resolve_sound_path(path_str: str, base_dir: str | Path | None = None) -> Path | None:
    """Find the alarm sound file.

    Absolute paths are used as-is. Relative paths are tried against
    ``base_dir`` first, then the working directory. Returns None when
    nothing exists.
    """
    if not path_str:
        return None

    path = Path(os.path.expanduser(path_str))
    if path.is_absolute():
        return path if path.is_file() else None

    if base_dir is not None:
        candidate = Path(base_dir) / path
        if candidate.is_file():
            return candidate

    if path.is_file():
        return path.resolve()
    return None


def _run_quiet(cmd: list[str]) -> bool:
    """Run a playback command to completion. Returns success."""
    try:
        subprocess.run(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
        return True
    except (FileNotFoundError, OSError, subprocess.CalledProcessError) as exc:
        logger.debug("Playback command %s failed: %s", cmd[0], exc)
        return False


class AlarmSink:
    """Something that can sound the alarm."""

    volume = 0

    def play(self) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        return self.__class__.__name__


class MutedSink(AlarmSink):
    def play(self) -> None:
        logger.debug("Alarm volume is 0, alarm is muted")

    def describe(self) -> str:
        return "muted"


class BeepSink(AlarmSink):
    """System beep. Volume only decides whether it sounds at all."""

    def __init__(self, volume: int = 100):
        self.volume = clamp_volume(volume)
        self._system = platform.system()

    def play(self) -> None:
        if self.volume < MIN_BEEP_VOLUME:
            logger.debug("Alarm volume %d too low for a beep, skipping", self.volume)
            return

        if self._system == "Windows":
            script = f"[console]::beep({BEEP_FREQUENCY_HZ}, {BEEP_DURATION_MS})"
            if _run_quiet(["powershell", "-Command", script]):
                return
        self._bell()

    @staticmethod
    def _bell():
        sys.stdout.write("\a")
        sys.stdout.flush()

    def describe(self) -> str:
        return "system beep"


class PlayFileSink(AlarmSink):
    """Play an audio file through whatever player the platform offers."""

    def __init__(self, path: str | Path, volume: int = 100):
        self.path = Path(path)
        self.volume = clamp_volume(volume)
        self._system = platform.system()

    def play(self) -> None:
        if self._system == "Windows":
            played = self._play_windows()
        elif self._system == "Darwin":
            played = _run_quiet(
                ["afplay", "-v", f"{self.volume / 100:.2f}", str(self.path)]
            )
        else:
            played = self._play_linux()

        if not played:
            logger.error("Error playing audio file: %s", self.path)

    def _play_windows(self) -> bool:
        abs_path = str(self.path.resolve()).replace("\\", "\\\\").replace('"', '\\"')
        script = WMP_SCRIPT.format(volume=self.volume, path=abs_path)
        if _run_quiet(["powershell", "-Command", script]):
            return True

        # No volume control in either fallback
        if self.path.suffix.lower() == ".wav":
            return _run_quiet([
                "powershell", "-Command",
                f'[System.Media.SoundPlayer]::new("{abs_path}").PlaySync()',
            ])
        return _run_quiet(["cmd", "/C", "start", "/MIN", str(self.path)])

    def _play_linux(self) -> bool:
        if _run_quiet(["aplay", "-q", str(self.path)]):
            return True
        # paplay volume is linear, 65536 == 100%
        pa_volume = int(65536 * self.volume / 100)
        return _run_quiet(["paplay", f"--volume={pa_volume}", str(self.path)])

    def describe(self) -> str:
        return str(self.path)


def make_alarm_sink(config, base_dir: str | Path | None = None) -> AlarmSink:
    """Pick the sink variant for a loaded Config."""
    if config.alarm_volume == 0:
        return MutedSink()

    if config.alarm_sound_file:
        sound_path = resolve_sound_path(config.alarm_sound_file, base_dir)
        if sound_path is not None:
            return PlayFileSink(sound_path, config.alarm_volume)
        logger.warning(
            "Audio file not found: %s, using system beep instead",
            config.alarm_sound_file,
        )
    return BeepSink(config.alarm_volume)
