from __future__ import annotations

from rclone_sync_helper.core.config import JobConfig, SyncPair


def job_pairs(cfg: JobConfig) -> list[SyncPair]:
    """Configured pairs in order, or the single implicit base pair."""
    if not cfg.pairs:
        return [SyncPair(local=cfg.local_path, remote=cfg.remote)]
    return list(cfg.pairs)


def resolve_local(base_local: str, local: str) -> str:
    local = local.strip()
    if local.startswith("/"):
        return local
    if not local:
        return base_local
    return f"{base_local.rstrip('/')}/{local}"


def resolve_remote(base_remote: str, remote: str) -> str:
    remote = remote.strip()
    if ":" in remote:
        # Full remote like "gdrive:foo/bar"
        return remote
    if not remote:
        return base_remote
    base = base_remote.rstrip("/")
    if base.endswith(":"):
        return f"{base}{remote}"
    return f"{base}/{remote}"


def resolve_pair_paths(cfg: JobConfig, pair: SyncPair) -> tuple[str, str]:
    return resolve_local(cfg.local_path, pair.local), resolve_remote(cfg.remote, pair.remote)
