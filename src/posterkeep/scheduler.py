"""Run scheduling for the automatic import.

Only one scheduled run may be active at a time. A lock file holding the
start time guards it; a lock older than `STALE_LOCK_SECONDS` is assumed to
belong to a run that died and is reclaimed. A plain-text last-run file
holding an epoch timestamp decides whether the configured interval has
elapsed.
"""

from __future__ import annotations

import logging
import re
import time
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

LOCK_FILENAME = "auto_import.lock"
LAST_RUN_FILENAME = "last_auto_import.txt"

STALE_LOCK_SECONDS = 7200
DEFAULT_INTERVAL_SECONDS = 86400

INTERVAL_UNITS = {
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
}

_INTERVAL_PATTERN = re.compile(r"^\s*(\d+)\s*([mhdw])\s*$")


def parse_interval(interval: str) -> int:
    """Convert a schedule like "24h" into seconds.

    Args:
        interval: <number><unit> with unit one of m, h, d or w.

    Returns:
        Interval in seconds; 86400 if the value cannot be parsed.
    """
    match = _INTERVAL_PATTERN.match(interval or "")
    if not match or int(match.group(1)) <= 0:
        logger.warning("Invalid schedule %r, using 24h", interval)
        return DEFAULT_INTERVAL_SECONDS
    return int(match.group(1)) * INTERVAL_UNITS[match.group(2)]


class RunLock:
    """Whole-process mutual exclusion through a lock file.

    Use as a context manager:

        with RunLock(data_dir / LOCK_FILENAME) as lock:
            if not lock.acquired:
                return  # another run is active
            ...
    """

    def __init__(self, path: Path, stale_after: int = STALE_LOCK_SECONDS) -> None:
        self.path = path
        self.stale_after = stale_after
        self.acquired = False

    def _age(self) -> float | None:
        """Seconds since the lock file was written, or None if there is none."""
        try:
            return time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            return None

    def acquire(self) -> bool:
        """Take the lock unless a fresh one exists.

        Returns:
            True if this process now holds the lock.
        """
        age = self._age()
        if age is not None:
            if age < self.stale_after:
                logger.info("Another import is already running (lock %s)", self.path)
                return False
            logger.warning("Removing stale lock file %s (%.0f seconds old)", self.path, age)
            self.path.unlink(missing_ok=True)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(datetime.now(UTC).isoformat(), encoding="utf-8")
        self.acquired = True
        return True

    def release(self) -> None:
        """Drop the lock if this process holds it."""
        if self.acquired:
            self.path.unlink(missing_ok=True)
            self.acquired = False

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(self, *args: object) -> None:
        self.release()


class LastRun:
    """The epoch timestamp of the last successful scheduled run."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self) -> int | None:
        """Get the last run time, or None if there has been none."""
        try:
            return int(self.path.read_text(encoding="utf-8").strip())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable last-run file %s: %s", self.path, e)
            return None

    def write(self, timestamp: int | None = None) -> None:
        """Record a run time (now by default)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(int(timestamp if timestamp is not None else time.time())))

    def is_due(self, interval_seconds: int, now: float | None = None) -> bool:
        """Check whether at least `interval_seconds` have passed since the last run."""
        last_run = self.read()
        if last_run is None:
            return True
        current = now if now is not None else time.time()
        return current - last_run >= interval_seconds
