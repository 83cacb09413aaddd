from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from rclone_sync_helper.core.config import JobConfig, validate_job
from rclone_sync_helper.core.paths import DEFAULT_LOCK_FILE, HostEnv
from rclone_sync_helper.providers.rclone_bisync.command import build_command
from rclone_sync_helper.providers.rclone_bisync.executor import AttemptOutput, BisyncSpawnError, run_attempt
from rclone_sync_helper.providers.rclone_bisync.lock import AlreadyRunningError, LockGuard
from rclone_sync_helper.providers.rclone_bisync.pairs import job_pairs, resolve_pair_paths
from rclone_sync_helper.providers.rclone_bisync.recovery import RecoveryPolicy
from rclone_sync_helper.providers.rclone_bisync.run_log import RunLog, resolve_log_dir
from rclone_sync_helper.providers.rclone_bisync.stale_locks import (
    clean_bisync_locks,
    is_bisync_running,
    remove_stale_lock_file,
)

logger = logging.getLogger("runner")


@dataclass(frozen=True)
class RunResult:
    timestamp: datetime
    exit_code: int
    stdout: str
    stderr: str
    log_file: str | None = None
    duration_secs: int | None = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "exit_code": self.exit_code,
            "log_file": self.log_file,
            "duration_secs": self.duration_secs,
        }


def resolve_lock_path(cfg: JobConfig, env: HostEnv) -> Path:
    lock_file = (cfg.lock_file or "").strip() or DEFAULT_LOCK_FILE
    return env.expand_home(lock_file)


def _append(combined: str, chunk: str) -> str:
    if combined and chunk:
        return f"{combined}\n{chunk}"
    return combined + chunk


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobRunner:
    """Runs one configured job: lock, pairs, recovery, per-run log.

    The executor, `which` lookup, bisync-running check and clock are
    injectable so the orchestration can be exercised without rclone.
    """

    def __init__(
        self,
        env: HostEnv,
        execute: Callable[[Sequence[str]], AttemptOutput] = run_attempt,
        which: Callable[[str], str | None] = shutil.which,
        bisync_running: Callable[[], bool] = is_bisync_running,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.env = env
        self.execute = execute
        self.which = which
        self.bisync_running = bisync_running
        self.clock = clock

    def _remove_prior_lock(self, path: str) -> bool:
        return remove_stale_lock_file(self.env.expand_home(path), self.bisync_running)

    def _preclean(self, cfg: JobConfig):
        try:
            removed = clean_bisync_locks(self.env.bisync_cache_dir(), self.bisync_running)
        except RuntimeError as e:
            # HOME unset; nothing to clean.
            logger.debug("bisync_lock_preclean_skipped job=%s error=%s", cfg.name, e)
            return
        if removed:
            logger.info("bisync_lock_preclean job=%s removed=%s", cfg.name, removed)

    def run(self, cfg: JobConfig) -> RunResult:
        timestamp = self.clock()
        validate_job(cfg, self.env)

        if cfg.clean_bisync_locks:
            self._preclean(cfg)

        lock_path = resolve_lock_path(cfg, self.env)
        try:
            guard = LockGuard.acquire(lock_path)
        except AlreadyRunningError as e:
            logger.info("sync_skipped_already_running job=%s pid=%s", cfg.name, e.pid)
            return RunResult(
                timestamp=timestamp,
                exit_code=0,
                stdout="",
                stderr=f"Sync already running (PID: {e.pid}). Skipping this run.",
            )

        with guard:
            return self._run_locked(cfg, timestamp)

    def _run_locked(self, cfg: JobConfig, timestamp: datetime) -> RunResult:
        pairs = job_pairs(cfg)
        logger.info("sync_run_started job=%s pairs=%s", cfg.name, len(pairs))

        combined_stdout = ""
        combined_stderr = ""
        final_exit = 0

        with RunLog.create(resolve_log_dir(cfg, self.env), timestamp) as run_log:
            run_log.header(cfg, timestamp)

            for idx, pair in enumerate(pairs, start=1):
                local, remote = resolve_pair_paths(cfg, pair)
                run_log.pair_section(idx, len(pairs), local, remote)

                def execute(recovery_args: Sequence[str], local=local, remote=remote) -> AttemptOutput:
                    argv = build_command(cfg, local, remote, recovery_args, which=self.which)
                    try:
                        return self.execute(argv)
                    except BisyncSpawnError as e:
                        message = f"Failed to execute rclone bisync for job {cfg.name} ({local} <-> {remote})"
                        run_log.error(f"{message}: {e}")
                        raise BisyncSpawnError(message) from e

                policy = RecoveryPolicy(
                    execute=execute,
                    remove_lock=self._remove_prior_lock,
                    auto_resync=cfg.auto_resync,
                    on_attempt=run_log.attempt,
                    on_note=run_log.note,
                )
                outcome = policy.run()

                combined_stdout = _append(combined_stdout, outcome.stdout)
                combined_stderr = _append(combined_stderr, outcome.stderr)
                logger.info(
                    "pair_finished job=%s pair=%s/%s exit=%s attempts=%s",
                    cfg.name,
                    idx,
                    len(pairs),
                    outcome.exit_code,
                    len(outcome.attempts),
                )
                # First failing pair's code is reported; later pairs still run.
                if outcome.exit_code != 0 and final_exit == 0:
                    final_exit = outcome.exit_code

            run_log.footer(final_exit)

        duration_secs = max(int((self.clock() - timestamp).total_seconds()), 0)
        logger.info("sync_run_finished job=%s exit=%s duration=%ss", cfg.name, final_exit, duration_secs)
        return RunResult(
            timestamp=timestamp,
            exit_code=final_exit,
            stdout=combined_stdout,
            stderr=combined_stderr,
            log_file=str(run_log.path),
            duration_secs=duration_secs,
        )
