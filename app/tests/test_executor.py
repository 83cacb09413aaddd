from pathlib import Path

import pytest

from rclone_sync_helper.providers.rclone_bisync.executor import BisyncSpawnError, run_attempt


def test_captures_exit_code_and_decodes_lossily():
    out = run_attempt(["sh", "-c", "printf '\\377 ok'; echo err >&2; exit 3"])

    assert out.exit_code == 3
    assert out.stdout == "\ufffd ok"
    assert out.stderr == "err\n"


def test_killed_by_signal_reports_minus_one():
    out = run_attempt(["sh", "-c", "kill -9 $$"])

    assert out.exit_code == -1


def test_missing_binary_raises_spawn_error(tmp_path: Path):
    missing = str(tmp_path / "no-such-rclone")

    with pytest.raises(BisyncSpawnError, match="no-such-rclone") as exc_info:
        run_attempt([missing, "bisync"])

    assert isinstance(exc_info.value.__cause__, OSError)
