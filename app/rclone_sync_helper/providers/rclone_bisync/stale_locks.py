"""Best-effort removal of lock files left behind by dead rclone bisync runs.

Nothing here raises: a failed cleanup only means the next bisync attempt
reports the lock again.
"""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Callable
from pathlib import Path

from rclone_sync_helper.providers.rclone_bisync.lock import pid_alive, read_pid

logger = logging.getLogger("stale_locks")

STALE_LOCK_AGE_SEC = 60 * 60
LOCK_SUFFIX = ".lck"
BISYNC_PROCESS_PATTERN = "rclone.*bisync"


def is_bisync_running() -> bool:
    try:
        proc = subprocess.run(
            ["pgrep", "-f", BISYNC_PROCESS_PATTERN],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except (OSError, subprocess.SubprocessError):
        return False
    return proc.returncode == 0


def file_older_than(path: Path, age_sec: float, now: float | None = None) -> bool:
    try:
        mtime = path.stat().st_mtime
    except OSError:
        return False
    elapsed = (now if now is not None else time.time()) - mtime
    return elapsed > age_sec


def _unlink(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.debug("stale_lock_remove_failed path=%s error=%s", path, e)
        return False
    logger.info("stale_lock_removed path=%s", path)
    return True


def _is_stale(path: Path, bisync_running: Callable[[], bool]) -> bool:
    pid = read_pid(path)
    if pid is not None:
        return not pid_alive(pid)
    # No PID recorded: only an old lock with no bisync around is safe to drop.
    return not bisync_running() and file_older_than(path, STALE_LOCK_AGE_SEC)


def remove_stale_lock_file(path: Path, bisync_running: Callable[[], bool] = is_bisync_running) -> bool:
    """Remove one lock file named by rclone if it is stale. Returns True when removed."""
    if not path.exists():
        return False
    if not _is_stale(path, bisync_running):
        logger.info("prior_lock_kept path=%s reason=holder_alive_or_recent", path)
        return False
    return _unlink(path)


def clean_bisync_locks(cache_dir: Path, bisync_running: Callable[[], bool] = is_bisync_running) -> int:
    """Sweep `*.lck` files in rclone's bisync cache dir; returns how many were removed.

    With no bisync process on the host every lock goes. Otherwise only locks
    whose PID is dead, or unstamped locks older than an hour, are removed.
    """
    if not cache_dir.is_dir():
        return 0

    try:
        candidates = [p for p in cache_dir.iterdir() if p.suffix == LOCK_SUFFIX]
    except OSError as e:
        logger.debug("stale_lock_scan_failed dir=%s error=%s", cache_dir, e)
        return 0
    if not candidates:
        return 0

    removed = 0
    if not bisync_running():
        for p in candidates:
            removed += int(_unlink(p))
        return removed

    for p in candidates:
        pid = read_pid(p)
        if pid is not None:
            if not pid_alive(pid):
                removed += int(_unlink(p))
        elif file_older_than(p, STALE_LOCK_AGE_SEC):
            removed += int(_unlink(p))
    return removed
