from __future__ import annotations

from fastapi import FastAPI

from rclone_sync_helper import __version__
from rclone_sync_helper.core.config import load_config, resolve_log_file
from rclone_sync_helper.core.paths import HostEnv
from rclone_sync_helper.web.api import router as api_router
from rclone_sync_helper.web.security import NetworkAllowlistMiddleware, get_allowed_nets


def build_app() -> FastAPI:
    api = FastAPI(title="rclone-sync-helper", version=__version__)
    api.add_middleware(NetworkAllowlistMiddleware, allowed_nets=get_allowed_nets())
    api.include_router(api_router)
    return api


def main():
    import uvicorn

    from rclone_sync_helper.core.logging_setup import setup_logging

    env = HostEnv.from_environ()
    cfg = load_config(env)
    setup_logging(cfg.logging.level, resolve_log_file(cfg, env))

    uvicorn.run(
        build_app(),
        host=cfg.web.bind_host,
        port=cfg.web.port,
        log_level=cfg.logging.level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
