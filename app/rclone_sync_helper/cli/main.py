from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from rclone_sync_helper.core.config import (
    DEFAULT_JOB_NAME,
    JobNotConfiguredError,
    job_config_path,
    list_jobs,
    load_config,
    load_or_create_job,
    resolve_log_file,
    validate_job,
)
from rclone_sync_helper.core.log_tail import build_log_tail_payload, tail_lines
from rclone_sync_helper.core.logging_setup import setup_logging
from rclone_sync_helper.core.paths import HostEnv
from rclone_sync_helper.providers.rclone_bisync import JobRunner, StatusStore
from rclone_sync_helper.providers.rclone_bisync.command import cmd_exists
from rclone_sync_helper.providers.rclone_bisync.executor import BisyncSpawnError
from rclone_sync_helper.providers.rclone_bisync.lock import detect_running
from rclone_sync_helper.providers.rclone_bisync.run_log import resolve_log_dir
from rclone_sync_helper.providers.rclone_bisync.runner import resolve_lock_path
from rclone_sync_helper.providers.rclone_bisync.status import read_run_history

app = typer.Typer(add_completion=False, help="Run rclone bisync jobs with locking and recovery.")
console = Console()

JOB_OPTION_HELP = "Job name (config: $XDG_CONFIG_HOME/sync-helper/jobs/<job>.yaml)"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _env() -> HostEnv:
    return HostEnv.from_environ()


def _print_json(payload: Any):
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _init_logging(env: HostEnv):
    cfg = load_config(env)
    setup_logging(cfg.logging.level, resolve_log_file(cfg, env))


@app.command()
def run(job: str = typer.Option(DEFAULT_JOB_NAME, "--job", help=JOB_OPTION_HELP)):
    """Run a configured job once (used by timers/cron) and print a JSON summary."""
    env = _env()
    _init_logging(env)

    try:
        cfg = load_or_create_job(job, env)
        store = StatusStore.load(job, env)
        result = store.run_sync(cfg, JobRunner(env))
    except (JobNotConfiguredError, BisyncSpawnError, OSError) as e:
        try:
            StatusStore.load(job, env).set_last_error_and_persist(str(e))
        except (OSError, RuntimeError):
            pass
        _print_json({"ok": False, "job": job, "error": str(e)})
        raise typer.Exit(2)

    state = store.state
    summary = {
        "ok": result.exit_code == 0,
        "job": job,
        **result.to_dict(),
        "changed_count": state.last_changed_count,
        "error": state.last_error,
    }
    if result.log_file is None and result.stderr:
        summary["note"] = result.stderr
    _print_json(summary)
    if result.exit_code != 0:
        raise typer.Exit(2)


@app.command()
def status(job: str = typer.Option(DEFAULT_JOB_NAME, "--job", help=JOB_OPTION_HELP)):
    """Show persisted state of the last run plus live running state."""
    env = _env()
    cfg = load_or_create_job(job, env)
    state = StatusStore.load(job, env).state
    running = detect_running(resolve_lock_path(cfg, env))

    table = Table(title=f"rclone sync: {job}")
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("config", str(job_config_path(job, env)))
    table.add_row("running", f"yes (pid {running.pid})" if running else "no")
    table.add_row("last_run", str(state.last_run or "-"))
    table.add_row("last_success", str(state.last_success or "-"))
    table.add_row("last_exit_code", str(state.last_exit_code if state.last_exit_code is not None else "-"))
    table.add_row("last_error", state.last_error or "-")
    table.add_row("changed_items", str(state.last_changed_count if state.last_changed_count is not None else "-"))
    table.add_row("duration_secs", str(state.last_duration_secs if state.last_duration_secs is not None else "-"))
    table.add_row("remote_summary", state.remote_summary or "-")
    table.add_row("log_file", state.last_log_file or "-")
    console.print(table)

    for line in state.log_preview:
        console.print(f"  {line}", markup=False)


@app.command("jobs")
def jobs():
    """List configured job names."""
    _print_json(list_jobs(_env()))


@app.command("job-show")
def job_show(job: str = typer.Option(DEFAULT_JOB_NAME, "--job", help=JOB_OPTION_HELP)):
    """Show a job config (created empty when missing)."""
    cfg = load_or_create_job(job, _env())
    _print_json(cfg.model_dump())


@app.command("job-validate")
def job_validate(
    job: str = typer.Option(DEFAULT_JOB_NAME, "--job", help=JOB_OPTION_HELP),
    strict: bool = typer.Option(False, "--strict", help="Return non-zero when validation fails."),
):
    """Validate a job config and host prerequisites."""
    env = _env()
    out: dict[str, Any] = {
        "ok": True,
        "checked_at": _now_iso(),
        "job": job,
        "config_path": str(job_config_path(job, env)),
        "checks": {
            "config_load": False,
            "paths_configured": False,
            "rclone_available": cmd_exists("rclone"),
            "nice_ionice_available": cmd_exists("nice") and cmd_exists("ionice"),
            "rclone_config_exists": None,
            "log_dir_ready": False,
        },
        "warnings": [],
        "errors": [],
    }

    try:
        cfg = load_or_create_job(job, env)
        out["checks"]["config_load"] = True
    except Exception as e:
        out["ok"] = False
        out["errors"].append(f"load_job_failed: {e}")
        _print_json(out)
        if strict:
            raise typer.Exit(2)
        return

    try:
        validate_job(cfg, env)
        out["checks"]["paths_configured"] = True
    except JobNotConfiguredError as e:
        out["errors"].append(str(e))

    if not out["checks"]["rclone_available"]:
        out["errors"].append("rclone_not_found_in_path")
    if cfg.use_nice_ionice and not out["checks"]["nice_ionice_available"]:
        out["warnings"].append("nice_ionice_missing: running at normal priority")

    config_path = (cfg.rclone_config_path or "").strip()
    if config_path:
        exists = env.expand_home(config_path).exists()
        out["checks"]["rclone_config_exists"] = exists
        if not exists:
            out["warnings"].append(f"rclone_config_missing: {config_path}")

    try:
        resolve_log_dir(cfg, env).mkdir(parents=True, exist_ok=True)
        out["checks"]["log_dir_ready"] = True
    except (OSError, RuntimeError) as e:
        out["errors"].append(f"log_dir_unavailable: {e}")

    out["ok"] = len(out["errors"]) == 0
    _print_json(out)
    if strict and not out["ok"]:
        raise typer.Exit(2)


@app.command()
def history(limit: int = typer.Option(20, "--limit", min=1, max=500)):
    """Show recent runs, newest first."""
    env = _env()
    _print_json(read_run_history(env.run_history_path(), limit=limit))


@app.command("logs-tail")
def logs_tail(
    n: int = typer.Option(200, "--n", min=1),
    level: str | None = typer.Option(None, "--level", help="Filter by log level (e.g. INFO)."),
    module: str | None = typer.Option(None, "--module", help="Filter by logger name (runner, lock, ...)."),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
):
    """Tail the service log file."""
    env = _env()
    cfg = load_config(env)
    payload = build_log_tail_payload(resolve_log_file(cfg, env), n=n, level=level, module=module)
    if json_output:
        _print_json(payload)
        return
    print(payload.get("tail", ""))


@app.command("last-log")
def last_log(
    job: str = typer.Option(DEFAULT_JOB_NAME, "--job", help=JOB_OPTION_HELP),
    n: int = typer.Option(200, "--n", min=1),
):
    """Print the tail of the last run's log file."""
    env = _env()
    log_file = StatusStore.load(job, env).state.last_log_file
    if not log_file or not Path(log_file).exists():
        print(f"No run log recorded for job '{job}'.")
        raise typer.Exit(1)
    print("\n".join(tail_lines(log_file, n=n)))


@app.command()
def serve():
    """Start the web API."""
    from rclone_sync_helper.web.main import main as web_main

    web_main()


def main():
    app()


if __name__ == "__main__":
    main()
