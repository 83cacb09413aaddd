import json
from pathlib import Path

from typer.testing import CliRunner

from rclone_sync_helper.cli import main as cli_module
from rclone_sync_helper.core.config import JobConfig, job_config_path, save_job
from rclone_sync_helper.core.paths import HostEnv

runner = CliRunner()


def _use_home(monkeypatch, tmp_path: Path) -> HostEnv:
    env = HostEnv(home=str(tmp_path))
    monkeypatch.setattr(cli_module, "_env", lambda: env)
    return env


def test_job_show_creates_empty_job(monkeypatch, tmp_path: Path):
    _use_home(monkeypatch, tmp_path)

    result = runner.invoke(cli_module.app, ["job-show", "--job", "photos"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["name"] == "photos"
    assert payload["auto_resync"] is True


def test_job_validate_strict_fails_for_empty_job(monkeypatch, tmp_path: Path):
    _use_home(monkeypatch, tmp_path)

    result = runner.invoke(cli_module.app, ["job-validate", "--job", "photos", "--strict"])

    assert result.exit_code == 2
    payload = json.loads(result.stdout)
    assert payload["ok"] is False
    assert payload["checks"]["paths_configured"] is False


def test_run_reports_configuration_error(monkeypatch, tmp_path: Path):
    env = _use_home(monkeypatch, tmp_path)
    monkeypatch.setattr(cli_module, "setup_logging", lambda *_args, **_kwargs: None)
    save_job(JobConfig(name="docs"), env)

    result = runner.invoke(cli_module.app, ["run", "--job", "docs"])

    assert result.exit_code == 2
    payload = json.loads(result.stdout)
    assert payload["ok"] is False
    assert "not configured" in payload["error"]


def test_run_reports_malformed_job_file(monkeypatch, tmp_path: Path):
    env = _use_home(monkeypatch, tmp_path)
    monkeypatch.setattr(cli_module, "setup_logging", lambda *_args, **_kwargs: None)
    path = job_config_path("docs", env)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("auto_resync: [oops\n", encoding="utf-8")

    result = runner.invoke(cli_module.app, ["run", "--job", "docs"])

    assert result.exit_code == 2
    payload = json.loads(result.stdout)
    assert payload["ok"] is False
    assert "Failed to read job config" in payload["error"]


def test_run_reports_invalid_job_field(monkeypatch, tmp_path: Path):
    env = _use_home(monkeypatch, tmp_path)
    monkeypatch.setattr(cli_module, "setup_logging", lambda *_args, **_kwargs: None)
    path = job_config_path("docs", env)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("local_path: /data\nremote: 'gdrive:'\nauto_resync: maybe\n", encoding="utf-8")

    result = runner.invoke(cli_module.app, ["run", "--job", "docs"])

    assert result.exit_code == 2
    payload = json.loads(result.stdout)
    assert payload["ok"] is False
    assert "Invalid job config" in payload["error"]
