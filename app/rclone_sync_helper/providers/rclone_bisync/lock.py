from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger("lock")


class AlreadyRunningError(RuntimeError):
    def __init__(self, pid: int):
        super().__init__(f"sync_already_running pid={pid}")
        self.pid = pid


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else.
        return True
    except (OSError, OverflowError):
        return False
    return True


def read_pid(path: Path) -> int | None:
    """First line of a lock file as a PID, or None when missing/unparsable."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    lines = text.strip().splitlines()
    if not lines:
        return None
    try:
        return int(lines[0].strip())
    except ValueError:
        return None


class LockGuard:
    """PID-stamped lock file for one sync job.

    Use as a context manager; the file is removed on every exit path
    while it still carries this guard's PID.
    A lock whose PID is dead or unparsable is treated as abandoned and
    reclaimed by the next acquirer.
    """

    def __init__(self, path: Path, pid: int):
        self.path = path
        self.pid = pid
        self.released = False

    @staticmethod
    def _create_exclusive(path: Path) -> bool:
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(f"{os.getpid()}\n")
        return True

    @classmethod
    def acquire(cls, path: Path) -> "LockGuard":
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            pass

        if not cls._create_exclusive(path):
            pid = read_pid(path)
            if pid is not None and pid_alive(pid):
                raise AlreadyRunningError(pid)
            logger.warning("stale_job_lock_reclaimed path=%s pid=%s", path, pid)
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            # Losing the race after a reclaim means another run holds the lock now.
            if not cls._create_exclusive(path):
                raise AlreadyRunningError(read_pid(path) or 0)

        logger.debug("job_lock_acquired path=%s pid=%s", path, os.getpid())
        return cls(path, os.getpid())

    def release(self):
        if self.released:
            return
        self.released = True
        holder = read_pid(self.path)
        if holder != self.pid:
            logger.warning("job_lock_not_ours path=%s holder=%s pid=%s", self.path, holder, self.pid)
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("job_lock_release_failed path=%s error=%s", self.path, e)

    def __enter__(self) -> "LockGuard":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


@dataclass(frozen=True)
class RunningInfo:
    pid: int
    started_at: datetime | None


def detect_running(path: Path) -> RunningInfo | None:
    """Report the live holder of a job lock, clearing the lock if its holder is dead."""
    pid = read_pid(path)
    if pid is None:
        return None

    if not pid_alive(pid):
        try:
            path.unlink()
        except OSError:
            pass
        return None

    try:
        started_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    except OSError:
        started_at = None
    return RunningInfo(pid=pid, started_at=started_at)
