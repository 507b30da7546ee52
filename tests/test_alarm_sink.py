"""Tests for alarm sink selection and platform playback commands."""

import subprocess
from unittest import mock

import pytest

from save_reminder.alarm import alarm_sink
from save_reminder.alarm.alarm_sink import (
    BeepSink,
    MutedSink,
    PlayFileSink,
    make_alarm_sink,
    resolve_sound_path,
)
from save_reminder.config import build_config


@pytest.fixture
def sound_file(tmp_path):
    p = tmp_path / "alarm.wav"
    p.write_bytes(b"RIFF....WAVE")
    return p


def _system(name):
    return mock.patch.object(alarm_sink.platform, "system", return_value=name)


# ---------------------------------------------------------------------------
# Sound path resolution
# ---------------------------------------------------------------------------

class TestResolveSoundPath:
    def test_empty(self):
        assert resolve_sound_path("") is None

    def test_absolute_existing(self, sound_file):
        assert resolve_sound_path(str(sound_file)) == sound_file

    def test_absolute_missing(self, tmp_path):
        assert resolve_sound_path(str(tmp_path / "missing.wav")) is None

    def test_relative_to_base_dir(self, sound_file, tmp_path):
        assert resolve_sound_path("alarm.wav", base_dir=tmp_path) == tmp_path / "alarm.wav"

    def test_relative_to_cwd(self, sound_file, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        other = tmp_path / "other"
        other.mkdir()
        assert resolve_sound_path("alarm.wav", base_dir=other) == sound_file.resolve()

    def test_relative_missing(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert resolve_sound_path("nope.wav", base_dir=tmp_path) is None


# ---------------------------------------------------------------------------
# Variant selection
# ---------------------------------------------------------------------------

class TestMakeAlarmSink:
    def test_volume_zero_is_muted(self, sound_file):
        cfg = build_config({"alarm_volume": 0, "alarm_sound_file": str(sound_file)})
        assert isinstance(make_alarm_sink(cfg), MutedSink)

    def test_no_file_is_beep(self):
        sink = make_alarm_sink(build_config({"alarm_volume": 70}))
        assert isinstance(sink, BeepSink)
        assert sink.volume == 70

    def test_file_found(self, sound_file, tmp_path):
        cfg = build_config({"alarm_sound_file": "alarm.wav", "alarm_volume": 30})
        sink = make_alarm_sink(cfg, base_dir=tmp_path)
        assert isinstance(sink, PlayFileSink)
        assert sink.path == sound_file
        assert sink.volume == 30

    def test_missing_file_falls_back_to_beep(self, tmp_path, caplog):
        cfg = build_config({"alarm_sound_file": str(tmp_path / "gone.mp3")})
        sink = make_alarm_sink(cfg)
        assert isinstance(sink, BeepSink)
        assert "using system beep" in caplog.text


# ---------------------------------------------------------------------------
# Playback
# ---------------------------------------------------------------------------

class TestMutedSink:
    def test_plays_nothing(self):
        with mock.patch.object(alarm_sink.subprocess, "run") as run:
            MutedSink().play()
        run.assert_not_called()


class TestBeepSink:
    def test_low_volume_skips(self):
        sink = BeepSink(volume=5)
        with mock.patch.object(sink, "_bell") as bell, \
                mock.patch.object(alarm_sink.subprocess, "run") as run:
            sink.play()
        bell.assert_not_called()
        run.assert_not_called()

    def test_linux_rings_bell(self):
        with _system("Linux"):
            sink = BeepSink(volume=100)
        with mock.patch.object(sink, "_bell") as bell, \
                mock.patch.object(alarm_sink.subprocess, "run") as run:
            sink.play()
        bell.assert_called_once()
        run.assert_not_called()

    def test_windows_uses_powershell(self):
        with _system("Windows"):
            sink = BeepSink(volume=100)
        with mock.patch.object(sink, "_bell") as bell, \
                mock.patch.object(alarm_sink.subprocess, "run") as run:
            sink.play()
        cmd = run.call_args[0][0]
        assert cmd[0] == "powershell"
        assert "[console]::beep(800, 500)" in cmd[2]
        bell.assert_not_called()

    def test_windows_falls_back_to_bell(self):
        with _system("Windows"):
            sink = BeepSink(volume=100)
        with mock.patch.object(sink, "_bell") as bell, \
                mock.patch.object(alarm_sink.subprocess, "run", side_effect=FileNotFoundError):
            sink.play()
        bell.assert_called_once()

    def test_volume_clamped(self):
        assert BeepSink(volume=250).volume == 100
        assert BeepSink(volume=-3).volume == 0


class TestPlayFileSink:
    def test_linux_aplay(self, sound_file):
        with _system("Linux"):
            sink = PlayFileSink(sound_file, volume=50)
        with mock.patch.object(alarm_sink.subprocess, "run") as run:
            sink.play()
        assert run.call_args_list[0][0][0] == ["aplay", "-q", str(sound_file)]
        assert run.call_count == 1

    def test_linux_falls_back_to_paplay(self, sound_file):
        with _system("Linux"):
            sink = PlayFileSink(sound_file, volume=50)
        failures = [subprocess.CalledProcessError(1, "aplay"), None]
        with mock.patch.object(alarm_sink.subprocess, "run", side_effect=failures) as run:
            sink.play()
        assert run.call_args_list[1][0][0] == ["paplay", "--volume=32768", str(sound_file)]

    def test_darwin_afplay_volume(self, sound_file):
        with _system("Darwin"):
            sink = PlayFileSink(sound_file, volume=25)
        with mock.patch.object(alarm_sink.subprocess, "run") as run:
            sink.play()
        assert run.call_args[0][0] == ["afplay", "-v", "0.25", str(sound_file)]

    def test_windows_media_player_script(self, sound_file):
        with _system("Windows"):
            sink = PlayFileSink(sound_file, volume=60)
        with mock.patch.object(alarm_sink.subprocess, "run") as run:
            sink.play()
        cmd = run.call_args[0][0]
        assert cmd[0] == "powershell"
        assert "WMPlayer.OCX" in cmd[2]
        assert "$player.settings.volume = 60" in cmd[2]

    def test_windows_wav_fallback(self, sound_file):
        with _system("Windows"):
            sink = PlayFileSink(sound_file, volume=60)
        failures = [subprocess.CalledProcessError(1, "powershell"), None]
        with mock.patch.object(alarm_sink.subprocess, "run", side_effect=failures) as run:
            sink.play()
        assert "SoundPlayer" in run.call_args_list[1][0][0][2]

    def test_all_players_missing_logs_error(self, sound_file, caplog):
        with _system("Linux"):
            sink = PlayFileSink(sound_file)
        with mock.patch.object(alarm_sink.subprocess, "run", side_effect=FileNotFoundError):
            sink.play()
        assert "Error playing audio file" in caplog.text
