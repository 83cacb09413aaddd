from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from rclone_sync_helper.core.paths import HostEnv

DEFAULT_JOB_NAME = "default"
CONFIG_TEMPLATE_NAME = "config.yaml.example"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    # Empty means `<state dir>/service.log`.
    file: str = ""


class WebConfig(BaseModel):
    bind_host: str = "127.0.0.1"  # can be set to LAN IP
    port: int = Field(default=8766, ge=1, le=65535)


class AppConfig(BaseModel):
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    web: WebConfig = Field(default_factory=WebConfig)
    default_job: str = DEFAULT_JOB_NAME


class SyncPair(BaseModel):
    local: str = ""
    remote: str = ""


class JobConfig(BaseModel):
    name: str
    local_path: str = ""
    remote: str = ""
    extra_args: list[str] = Field(default_factory=list)
    rclone_config_path: str | None = None
    # Local/remote pairs to sync. If empty, a single bisync runs local_path <-> remote.
    pairs: list[SyncPair] = Field(default_factory=list)
    # Deprecated: older configs listed `directories` instead of `pairs`.
    directories: list[str] = Field(default_factory=list)
    # Defaults to /tmp/rclone-sync.lock when unset.
    lock_file: str | None = None
    # Defaults to $HOME/logs/rclone-sync when unset.
    log_dir: str | None = None
    # Retry once with --resync when bisync says recovery is required.
    auto_resync: bool = True
    # Remove stale bisync `.lck` files under ~/.cache/rclone/bisync before starting.
    clean_bisync_locks: bool = True
    # Run rclone under `nice`/`ionice` when both exist.
    use_nice_ionice: bool = True

    @classmethod
    def empty(cls, name: str) -> "JobConfig":
        return cls(name=name)


class JobNotConfiguredError(ValueError):
    """The job config is unreadable or lacks the base paths or pairs it needs to run."""


def resolve_log_file(cfg: AppConfig, env: HostEnv) -> Path:
    if cfg.logging.file.strip():
        return env.expand_home(cfg.logging.file.strip())
    return env.state_dir() / "service.log"


def ensure_runtime_dirs(cfg: AppConfig, env: HostEnv):
    resolve_log_file(cfg, env).parent.mkdir(parents=True, exist_ok=True)
    env.state_dir().mkdir(parents=True, exist_ok=True)


def _dump_yaml(data: dict) -> str:
    return yaml.safe_dump(data, allow_unicode=True, sort_keys=False)


def load_config(env: HostEnv, path: Path | None = None) -> AppConfig:
    path = path or env.default_config_path()

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        template_path = path.parent / CONFIG_TEMPLATE_NAME
        if template_path.exists():
            try:
                template_text = template_path.read_text(encoding="utf-8")
                data = yaml.safe_load(template_text) or {}
                cfg = AppConfig.model_validate(data)
                path.write_text(template_text, encoding="utf-8")
            except Exception:
                cfg = AppConfig()
                path.write_text(_dump_yaml(cfg.model_dump()), encoding="utf-8")
        else:
            cfg = AppConfig()
            path.write_text(_dump_yaml(cfg.model_dump()), encoding="utf-8")
        ensure_runtime_dirs(cfg, env)
        return cfg

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = AppConfig.model_validate(data)
    ensure_runtime_dirs(cfg, env)
    return cfg


def job_config_path(name: str, env: HostEnv) -> Path:
    return env.jobs_dir() / f"{name}.yaml"


def _migrate_directories(cfg: JobConfig) -> JobConfig:
    if cfg.pairs:
        return cfg
    dirs = [d.strip() for d in cfg.directories if d.strip()]
    if dirs:
        cfg.pairs = [SyncPair(local=d, remote=d) for d in dirs]
    return cfg


def load_job(path: Path) -> JobConfig:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        raise JobNotConfiguredError(f"Failed to read job config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise JobNotConfiguredError(f"Failed to parse job config {path}: expected a mapping")
    data.setdefault("name", "")
    try:
        return JobConfig.model_validate(data)
    except ValidationError as exc:
        raise JobNotConfiguredError(f"Invalid job config {path}: {exc}") from exc


def load_or_create_job(name: str, env: HostEnv) -> JobConfig:
    path = job_config_path(name, env)
    if path.exists():
        cfg = load_job(path)
        if not cfg.name.strip():
            cfg.name = name
        return _migrate_directories(cfg)

    cfg = JobConfig.empty(name)
    save_job(cfg, env)
    return cfg


def save_job(cfg: JobConfig, env: HostEnv):
    path = job_config_path(cfg.name, env)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_dump_yaml(cfg.model_dump(exclude_none=True)), encoding="utf-8")


def list_jobs(env: HostEnv) -> list[str]:
    jobs_dir = env.jobs_dir()
    if not jobs_dir.is_dir():
        return []
    return sorted(p.stem for p in jobs_dir.glob("*.yaml"))


def validate_job(cfg: JobConfig, env: HostEnv):
    """Raise JobNotConfiguredError unless the job can be resolved into runnable pairs."""
    base_local_ok = bool(cfg.local_path.strip())
    base_remote_ok = bool(cfg.remote.strip())

    def _config_hint() -> str:
        try:
            return str(job_config_path(cfg.name, env))
        except RuntimeError:
            return "<config file>"

    if not cfg.pairs:
        if base_local_ok and base_remote_ok:
            return
        raise JobNotConfiguredError(
            f"Job '{cfg.name}' is not configured. Please set local_path and remote in {_config_hint()}"
        )

    if not base_local_ok:
        for pair in cfg.pairs:
            local = pair.local.strip()
            if not local or not local.startswith("/"):
                raise JobNotConfiguredError(
                    f"Job '{cfg.name}' is missing local_path and has a relative/empty pair.local. "
                    f"Update {_config_hint()}"
                )

    if not base_remote_ok:
        for pair in cfg.pairs:
            remote = pair.remote.strip()
            if not remote or ":" not in remote:
                raise JobNotConfiguredError(
                    f"Job '{cfg.name}' is missing remote and has a non-absolute/empty pair.remote. "
                    f"Update {_config_hint()}"
                )
