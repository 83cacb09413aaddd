from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from rclone_sync_helper.core.config import JobConfig
from rclone_sync_helper.core.paths import HostEnv
from rclone_sync_helper.providers.rclone_bisync.outcome import (
    detect_changed_count,
    detect_remote_summary,
    error_summary,
    preview_lines,
)
from rclone_sync_helper.providers.rclone_bisync.runner import JobRunner, RunResult

logger = logging.getLogger("status")

STATE_FILE_SUFFIX = "status.json"


class SyncState(BaseModel):
    job: str = "default"
    last_run: datetime | None = None
    last_success: datetime | None = None
    last_error: str | None = None
    log_preview: list[str] = Field(default_factory=list)
    remote_summary: str | None = None
    last_exit_code: int | None = None
    last_log_file: str | None = None
    last_changed_count: int | None = None
    last_duration_secs: int | None = None

    def update_from_result(self, result: RunResult):
        self.last_run = result.timestamp
        self.last_exit_code = result.exit_code
        self.log_preview = preview_lines(result.stdout, result.stderr)
        self.remote_summary = detect_remote_summary(result.stdout, result.stderr)
        self.last_log_file = result.log_file
        self.last_changed_count = detect_changed_count(result.stdout, result.stderr)
        self.last_duration_secs = result.duration_secs

        if result.exit_code == 0:
            self.last_success = result.timestamp
            self.last_error = None
        else:
            self.last_error = error_summary(result.exit_code, result.stderr)


def state_file_path(job: str, env: HostEnv) -> Path:
    state_dir = env.state_dir()
    state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir / f"{job}-{STATE_FILE_SUFFIX}"


def append_run_history(path: Path, entry: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False))
        f.write("\n")


def read_run_history(path: Path, limit: int = 50) -> list[dict]:
    if limit <= 0:
        return []
    if not path.exists():
        return []

    lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    out: list[dict] = []
    for line in reversed(lines):
        if len(out) >= limit:
            break
        raw = line.strip()
        if not raw:
            continue
        try:
            payload = json.loads(raw)
        except ValueError:
            payload = {"raw": raw, "parse_error": True}
        if isinstance(payload, dict):
            out.append(payload)
    return out


class StatusStore:
    def __init__(self, state_path: Path, state: SyncState, history_path: Path | None = None):
        self.state_path = state_path
        self.state = state
        self.history_path = history_path

    @classmethod
    def load(cls, job: str, env: HostEnv) -> "StatusStore":
        path = state_file_path(job, env)
        state = SyncState(job=job)
        if path.exists():
            try:
                state = SyncState.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, ValidationError) as e:
                logger.warning("status_load_failed job=%s path=%s error=%s", job, path, e)
        return cls(path, state, history_path=env.run_history_path())

    def persist(self):
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        self.state_path.write_text(self.state.model_dump_json(indent=2), encoding="utf-8")

    def run_sync(self, job_cfg: JobConfig, runner: JobRunner) -> RunResult:
        result = runner.run(job_cfg)
        self.state.update_from_result(result)
        self.persist()
        if self.history_path is not None:
            append_run_history(
                self.history_path,
                {
                    "job": job_cfg.name,
                    **result.to_dict(),
                    "changed_count": self.state.last_changed_count,
                    "error": self.state.last_error,
                },
            )
        return result

    def set_last_error_and_persist(self, message: str):
        self.state.last_error = message
        try:
            self.persist()
        except OSError as e:
            logger.warning("status_persist_failed job=%s error=%s", self.state.job, e)
