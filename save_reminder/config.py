"""Configuration loading.

The config file is plain JSON next to the project (``config/config.json``
by default). A missing file is created with defaults. Bad values never
abort startup: each one falls back to its default and the fallback is
logged and recorded in ``Config.warnings``.

Durations use the ``<number><unit>`` form, chained: ``"3s"``, ``"5m"``,
``"1h30m"``, ``"1.5s"``, ``"250ms"``.
"""

import json
import logging
import math
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path

from save_reminder.alarm.scheduler import format_seconds

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "config.json"

DEFAULT_ALARM_INTERVAL = "5m"
DEFAULT_DEBOUNCE_DELAY = "3s"
DEFAULT_REPEAT_INTERVAL = "5m"
DEFAULT_ALARM_VOLUME = 100

DEFAULTS = {
    "alarm_interval": DEFAULT_ALARM_INTERVAL,
    "debounce_delay": DEFAULT_DEBOUNCE_DELAY,
    "repeat_interval": DEFAULT_REPEAT_INTERVAL,
    "alarm_sound_file": "",
    "alarm_volume": DEFAULT_ALARM_VOLUME,
    "verbose_logging": False,
}

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
# Same ceiling as a signed 64-bit nanosecond count, and never past what a
# threading timer can wait for
MAX_DURATION_SECONDS = min((2**63 - 1) / 1e9, threading.TIMEOUT_MAX)


class DurationError(ValueError):
    pass


def parse_duration(text: str) -> float:
    """Parse a duration string into seconds.

    Raises DurationError on anything malformed, including a bare number
    other than "0".
    """
    if not isinstance(text, str):
        raise DurationError(f"duration must be a string, got {type(text).__name__}")
    s = text.strip()
    if not s:
        raise DurationError("empty duration")

    sign = 1.0
    if s[0] in "+-":
        sign = -1.0 if s[0] == "-" else 1.0
        s = s[1:]
    if s == "0":
        return 0.0

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(s):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(s):
        raise DurationError(f"invalid duration {text!r}")
    if total > MAX_DURATION_SECONDS:
        raise DurationError(f"duration {text!r} out of range")
    return sign * total


@dataclass
class Config:
    alarm_interval: float = 300.0
    debounce_delay: float = 3.0
    repeat_interval: float = 300.0
    alarm_sound_file: str = ""
    alarm_volume: int = DEFAULT_ALARM_VOLUME
    verbose_logging: bool = False
    raw: dict = field(default_factory=lambda: dict(DEFAULTS))
    warnings: list[str] = field(default_factory=list)

    def _warn(self, message: str):
        logger.warning(message)
        self.warnings.append(message)


def _duration_or_default(cfg: Config, key: str, value) -> float:
    default_text = DEFAULTS[key]
    default = parse_duration(default_text)
    if value in (None, ""):
        return default
    try:
        seconds = parse_duration(value)
    except DurationError as exc:
        cfg._warn(f"Invalid {key} in config ({exc}), using {default_text}")
        return default
    if seconds <= 0:
        cfg._warn(f"Non-positive {key} in config ({value!r}), using {default_text}")
        return default
    return seconds


def build_config(data: dict) -> Config:
    """Validate a decoded config mapping into a Config."""
    cfg = Config()
    merged = dict(DEFAULTS)
    merged.update({k: v for k, v in data.items() if k in DEFAULTS})
    cfg.raw = merged

    cfg.alarm_interval = _duration_or_default(cfg, "alarm_interval", merged["alarm_interval"])
    cfg.debounce_delay = _duration_or_default(cfg, "debounce_delay", merged["debounce_delay"])
    cfg.repeat_interval = _duration_or_default(cfg, "repeat_interval", merged["repeat_interval"])

    sound = merged["alarm_sound_file"]
    if sound is not None and not isinstance(sound, str):
        cfg._warn(f"Invalid alarm_sound_file in config ({sound!r}), using system beep")
        sound = ""
    cfg.alarm_sound_file = sound or ""

    volume = merged["alarm_volume"]
    if (isinstance(volume, bool) or not isinstance(volume, (int, float))
            or (isinstance(volume, float) and not math.isfinite(volume))):
        cfg._warn(f"Invalid alarm_volume in config ({volume!r}), using {DEFAULT_ALARM_VOLUME}")
        volume = DEFAULT_ALARM_VOLUME
    volume = int(volume)
    if volume < 0 or volume > 100:
        clamped = max(0, min(100, volume))
        cfg._warn(f"alarm_volume {volume} out of range 0-100, clamped to {clamped}")
        volume = clamped
    cfg.alarm_volume = volume

    verbose = merged["verbose_logging"]
    if not isinstance(verbose, bool):
        cfg._warn(f"Invalid verbose_logging in config ({verbose!r}), using false")
        verbose = False
    cfg.verbose_logging = verbose
    return cfg


def save_config(config_path: str | Path, data: dict | None = None):
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data or DEFAULTS, indent=2) + "\n")


def load_config(config_path: str | Path | None = None) -> Config:
    """Read the config file, creating it with defaults when absent."""
    path = Path(config_path or DEFAULT_CONFIG_PATH)

    if not path.exists():
        cfg = build_config({})
        try:
            save_config(path)
            logger.info("Created default config file: %s", path)
        except OSError as exc:
            cfg._warn(f"Failed to create default config file {path}: {exc}")
        return cfg

    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        cfg = build_config({})
        cfg._warn(f"Could not load config {path}, using defaults: {exc}")
        return cfg

    if not isinstance(data, dict):
        cfg = build_config({})
        cfg._warn(f"Config {path} is not a JSON object, using defaults")
        return cfg
    return build_config(data)


def log_config(cfg: Config):
    """Print the effective configuration at startup."""
    logger.info("=== Configuration ===")
    logger.info("Alarm Interval:    %s", format_seconds(cfg.alarm_interval))
    logger.info("Debounce Delay:    %s", format_seconds(cfg.debounce_delay))
    logger.info("Repeat Interval:   %s", format_seconds(cfg.repeat_interval))
    logger.info("Alarm Sound File:  %s", cfg.alarm_sound_file or "(system beep)")
    logger.info("Alarm Volume:      %d%%", cfg.alarm_volume)
    logger.info("Verbose Logging:   %s", cfg.verbose_logging)
    logger.info("===================")
