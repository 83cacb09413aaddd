from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, BackgroundTasks, HTTPException
from fastapi.responses import JSONResponse

from rclone_sync_helper.core.config import (
    JobNotConfiguredError,
    list_jobs,
    load_config,
    load_or_create_job,
    resolve_log_file,
    validate_job,
)
from rclone_sync_helper.core.log_tail import build_log_tail_payload
from rclone_sync_helper.core.paths import HostEnv
from rclone_sync_helper.providers.rclone_bisync import JobRunner, StatusStore
from rclone_sync_helper.providers.rclone_bisync.lock import detect_running
from rclone_sync_helper.providers.rclone_bisync.runner import resolve_lock_path
from rclone_sync_helper.providers.rclone_bisync.status import read_run_history

router = APIRouter(prefix="/api")
logger = logging.getLogger("web")

ACTIVE_JOBS_LOCK = threading.Lock()
_active_jobs: set[str] = set()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_env() -> HostEnv:
    return HostEnv.from_environ()


def make_runner(env: HostEnv) -> JobRunner:
    return JobRunner(env)


def _claim_job(job: str) -> bool:
    with ACTIVE_JOBS_LOCK:
        if job in _active_jobs:
            return False
        _active_jobs.add(job)
        return True


def _release_job(job: str) -> None:
    with ACTIVE_JOBS_LOCK:
        _active_jobs.discard(job)


def _running_payload(job: str, env: HostEnv) -> dict[str, Any]:
    with ACTIVE_JOBS_LOCK:
        queued_here = job in _active_jobs
    info = None
    try:
        cfg = load_or_create_job(job, env)
        info = detect_running(resolve_lock_path(cfg, env))
    except Exception as e:
        logger.warning("running_detect_failed job=%s error=%s", job, e)
    return {
        "running": queued_here or info is not None,
        "pid": info.pid if info else None,
        "started_at": info.started_at.isoformat() if info and info.started_at else None,
    }


def _build_readiness_payload() -> dict:
    checks: dict[str, bool] = {
        "config_load": False,
        "state_dir_ready": False,
        "log_parent_ready": False,
    }
    errors: list[str] = []

    env = get_env()
    cfg = None
    try:
        cfg = load_config(env)
        checks["config_load"] = True
    except Exception as e:
        errors.append(f"config_load_failed: {e}")

    if cfg is not None:
        try:
            env.state_dir().mkdir(parents=True, exist_ok=True)
            checks["state_dir_ready"] = True
        except (OSError, RuntimeError) as e:
            errors.append(f"state_dir_unavailable: {e}")

        try:
            resolve_log_file(cfg, env).parent.mkdir(parents=True, exist_ok=True)
            checks["log_parent_ready"] = True
        except (OSError, RuntimeError) as e:
            errors.append(f"log_parent_unavailable: {e}")

    return {
        "ok": all(checks.values()),
        "checked_at": _now_iso(),
        "checks": checks,
        "errors": errors,
    }


def _run_job_and_record(job: str) -> None:
    env = get_env()
    try:
        cfg = load_or_create_job(job, env)
        store = StatusStore.load(job, env)
        result = store.run_sync(cfg, make_runner(env))
        logger.info("web_sync_completed job=%s exit=%s log=%s", job, result.exit_code, result.log_file)
    except Exception as e:
        logger.exception("web_sync_failed job=%s: %s", job, e)
        try:
            StatusStore.load(job, env).set_last_error_and_persist(str(e))
        except Exception:
            logger.exception("web_sync_error_persist_failed job=%s", job)
    finally:
        _release_job(job)


@router.get("/healthz")
def healthz():
    return {"ok": True, "status": "alive", "checked_at": _now_iso()}


@router.get("/readyz")
def readyz():
    payload = _build_readiness_payload()
    return JSONResponse(payload, status_code=200 if payload["ok"] else 503)


@router.get("/jobs")
def get_jobs():
    env = get_env()
    return {"jobs": list_jobs(env)}


@router.get("/jobs/{job}/status")
def job_status(job: str):
    env = get_env()
    state = StatusStore.load(job, env).state
    return {
        "job": job,
        "checked_at": _now_iso(),
        "state": state.model_dump(mode="json"),
        **_running_payload(job, env),
    }


@router.post("/jobs/{job}/run")
def run_job_now(job: str, background: BackgroundTasks):
    """Queue one run of `job` on a worker thread; 409 when it is already running."""
    env = get_env()
    try:
        cfg = load_or_create_job(job, env)
        validate_job(cfg, env)
    except JobNotConfiguredError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if detect_running(resolve_lock_path(cfg, env)) is not None:
        raise HTTPException(status_code=409, detail="sync_busy")
    if not _claim_job(job):
        raise HTTPException(status_code=409, detail="sync_busy")

    logger.info("web_sync_queued job=%s", job)
    background.add_task(_run_job_and_record, job)
    return {"queued": True, "job": job, "queued_at": _now_iso()}


@router.get("/history")
def get_history(limit: int = 50):
    limit_sanitized = min(max(int(limit), 1), 500)
    path = get_env().run_history_path()
    items = read_run_history(path, limit=limit_sanitized)
    return {
        "path": str(path),
        "limit": limit_sanitized,
        "count": len(items),
        "items": items,
    }


@router.get("/logs")
def get_logs(n: int = 200, level: str | None = None, module: str | None = None):
    env = get_env()
    cfg = load_config(env)
    return build_log_tail_payload(resolve_log_file(cfg, env), n=n, level=level, module=module)
