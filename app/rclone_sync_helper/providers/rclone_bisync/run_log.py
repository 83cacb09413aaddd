from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import TextIO

from rclone_sync_helper.core.config import JobConfig
from rclone_sync_helper.core.paths import HostEnv
from rclone_sync_helper.providers.rclone_bisync.recovery import Attempt

LOG_STEM_FORMAT = "sync_%Y%m%d_%H%M%S"


def resolve_log_dir(cfg: JobConfig, env: HostEnv) -> Path:
    log_dir = (cfg.log_dir or "").strip()
    if log_dir:
        return env.expand_home(log_dir)
    return env.default_log_dir()


class RunLog:
    """Per-run plain-text log: header, one block per pair and attempt, footer."""

    def __init__(self, path: Path, handle: TextIO):
        self.path = path
        self._fh = handle

    @classmethod
    def create(cls, log_dir: Path, started_at: datetime) -> "RunLog":
        """Create a fresh log file; runs started in the same second get `_1`, `_2`, ... suffixes."""
        log_dir.mkdir(parents=True, exist_ok=True)
        stem = started_at.strftime(LOG_STEM_FORMAT)
        suffix = 0
        while True:
            name = f"{stem}.log" if suffix == 0 else f"{stem}_{suffix}.log"
            path = log_dir / name
            try:
                handle = path.open("x", encoding="utf-8")
            except FileExistsError:
                suffix += 1
                continue
            except OSError as e:
                raise OSError(f"Failed to create {path}: {e}") from e
            return cls(path, handle)

    def _write(self, text: str):
        self._fh.write(text)
        self._fh.flush()

    def header(self, cfg: JobConfig, started_at: datetime):
        lines = [
            "=== rclone bisync run started ===",
            f"job={cfg.name}",
            f"local_base={cfg.local_path}",
            f"remote_base={cfg.remote}",
            f"timestamp={started_at.isoformat()}",
        ]
        if cfg.pairs:
            pairs = ", ".join(f"({p.local!r}, {p.remote!r})" for p in cfg.pairs)
            lines.append(f"pairs=[{pairs}]")
        self._write("\n".join(lines) + "\n")

    def pair_section(self, index: int, total: int, local: str, remote: str):
        self._write(f"\n=== pair {index}/{total}: {local} <-> {remote} ===\n")

    def attempt(self, attempt: Attempt):
        chunk = f"\n--- attempt={attempt.label.value} (exit={attempt.exit_code}) ---\n"
        if attempt.stdout.strip():
            chunk += f"STDOUT:\n{attempt.stdout}\n"
        if attempt.stderr.strip():
            chunk += f"STDERR:\n{attempt.stderr}\n"
        self._write(chunk)

    def note(self, text: str):
        self._write(f"\n--- note ---\n{text}\n")

    def error(self, text: str):
        self._write(f"\n--- error ---\n{text}\n")

    def footer(self, exit_code: int):
        self._write(f"=== rclone bisync run finished (exit={exit_code}) ===\n")

    def close(self):
        if not self._fh.closed:
            self._fh.close()

    def __enter__(self) -> "RunLog":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
