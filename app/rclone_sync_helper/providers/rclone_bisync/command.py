from __future__ import annotations

import shutil
from collections.abc import Callable, Sequence

from rclone_sync_helper.core.config import JobConfig

RCLONE_BIN = "rclone"
RESYNC_FLAG = "--resync"
NICE_PREFIX = ["nice", "-n", "19", "ionice", "-c", "3"]


def cmd_exists(name: str, which: Callable[[str], str | None] = shutil.which) -> bool:
    return which(name) is not None


def bisync_args(cfg: JobConfig, local: str, remote: str, recovery_args: Sequence[str] = ()) -> list[str]:
    args = ["bisync", local, remote]

    config_path = (cfg.rclone_config_path or "").strip()
    if config_path:
        args += ["--config", config_path]

    # User-provided extra args (non-secret flags only); credentials stay in rclone.conf.
    args += list(cfg.extra_args)
    args += list(recovery_args)
    return args


def build_command(
    cfg: JobConfig,
    local: str,
    remote: str,
    recovery_args: Sequence[str] = (),
    which: Callable[[str], str | None] = shutil.which,
) -> list[str]:
    argv = [RCLONE_BIN, *bisync_args(cfg, local, remote, recovery_args)]
    if cfg.use_nice_ionice and cmd_exists("nice", which) and cmd_exists("ionice", which):
        return [*NICE_PREFIX, *argv]
    return argv
