"""Launcher for the save reminder.

Watches the quicksave, backs up every settled save and sounds an alarm
when too long has passed since the last one.

Usage:
    python run.py
    python run.py --config config/config.json
    python run.py --saves-dir "~/Documents/Neverwinter Nights 2/saves/multiplayer"
    python run.py --log-level DEBUG --no-index
"""

import sys

from save_reminder.monitor.reminder import main

if __name__ == "__main__":
    sys.exit(main())
