from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel

APP_DIR_NAME = "sync-helper"
DEFAULT_LOCK_FILE = "/tmp/rclone-sync.lock"


class HostEnv(BaseModel):
    """Environment-derived locations, resolved once at the entry point."""

    home: str = ""
    xdg_config_home: str = ""
    xdg_state_home: str = ""

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> "HostEnv":
        env = os.environ if environ is None else environ
        return cls(
            home=env.get("HOME", ""),
            xdg_config_home=env.get("XDG_CONFIG_HOME", ""),
            xdg_state_home=env.get("XDG_STATE_HOME", ""),
        )

    def _home_path(self) -> Path:
        if not self.home:
            raise RuntimeError("HOME is not set")
        return Path(self.home)

    def expand_home(self, path: str) -> Path:
        for prefix in ("~/", "$HOME/"):
            if path.startswith(prefix) and self.home:
                return Path(self.home) / path[len(prefix):]
        return Path(path)

    def config_dir(self) -> Path:
        if self.xdg_config_home:
            return Path(self.xdg_config_home) / APP_DIR_NAME
        return self._home_path() / ".config" / APP_DIR_NAME

    def jobs_dir(self) -> Path:
        return self.config_dir() / "jobs"

    def state_dir(self) -> Path:
        if self.xdg_state_home:
            return Path(self.xdg_state_home) / APP_DIR_NAME
        return self._home_path() / ".local" / "state" / APP_DIR_NAME

    def default_log_dir(self) -> Path:
        return self._home_path() / "logs" / "rclone-sync"

    def bisync_cache_dir(self) -> Path:
        # rclone keeps its bisync listings and `.lck` files here.
        return self._home_path() / ".cache" / "rclone" / "bisync"

    def default_config_path(self) -> Path:
        return self.config_dir() / "config.yaml"

    def run_history_path(self) -> Path:
        return self.state_dir() / "run_history.jsonl"
