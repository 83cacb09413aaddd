from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient

from rclone_sync_helper.core.paths import HostEnv
from rclone_sync_helper.web import api as api_module


def _build_client() -> TestClient:
    app = FastAPI()
    app.include_router(api_module.router)
    return TestClient(app)


def test_healthz_returns_alive():
    client = _build_client()
    resp = client.get("/api/healthz")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["ok"] is True
    assert payload["status"] == "alive"
    assert "checked_at" in payload


def test_readyz_returns_200_when_checks_pass(monkeypatch, tmp_path: Path):
    env = HostEnv(home=str(tmp_path))
    monkeypatch.setattr(api_module, "get_env", lambda: env)

    client = _build_client()
    resp = client.get("/api/readyz")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["ok"] is True
    assert payload["checks"]["config_load"] is True
    assert payload["checks"]["state_dir_ready"] is True
    assert payload["checks"]["log_parent_ready"] is True
    assert payload["errors"] == []


def test_readyz_returns_503_when_config_load_fails(monkeypatch, tmp_path: Path):
    def _raise_load_config(_env):
        raise RuntimeError("boom")

    monkeypatch.setattr(api_module, "get_env", lambda: HostEnv(home=str(tmp_path)))
    monkeypatch.setattr(api_module, "load_config", _raise_load_config)

    client = _build_client()
    resp = client.get("/api/readyz")
    assert resp.status_code == 503
    payload = resp.json()
    assert payload["ok"] is False
    assert payload["checks"]["config_load"] is False
    assert any("config_load_failed" in err for err in payload["errors"])
