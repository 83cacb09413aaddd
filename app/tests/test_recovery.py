from collections.abc import Sequence

from rclone_sync_helper.providers.rclone_bisync.executor import AttemptOutput
from rclone_sync_helper.providers.rclone_bisync.recovery import (
    RESYNC_DISABLED_NOTE,
    AttemptLabel,
    RecoveryPolicy,
    detect_prior_lock_file,
    needs_resync,
)

LOCK_MSG = "ERROR : Bisync critical error: prior lock file found: /home/u/.cache/rclone/bisync/a..b.lck"


class _ScriptedExecute:
    def __init__(self, *outputs: AttemptOutput):
        self.outputs = list(outputs)
        self.calls: list[tuple[str, ...]] = []

    def __call__(self, recovery_args: Sequence[str]) -> AttemptOutput:
        self.calls.append(tuple(recovery_args))
        return self.outputs.pop(0)


def _ok() -> AttemptOutput:
    return AttemptOutput(0, "INFO  : Bisync successful", "")


def _fail(stderr: str, code: int = 7) -> AttemptOutput:
    return AttemptOutput(code, "", stderr)


def test_needs_resync_is_case_insensitive():
    assert needs_resync("", "ERROR : Must run --resync to recover.")
    assert needs_resync("Bisync Aborted. Error is retryable", "")
    assert needs_resync("", "cannot find prior Path1 or Path2 listings, likely due to critical error")
    assert not needs_resync("failed to copy", "permission denied")


def test_detect_prior_lock_file_extracts_first_word():
    assert detect_prior_lock_file("", LOCK_MSG + " extra") == "/home/u/.cache/rclone/bisync/a..b.lck"
    assert detect_prior_lock_file("prior lock file found:   ", "") is None
    assert detect_prior_lock_file("nothing", "here") is None


def test_success_on_first_attempt_runs_once():
    execute = _ScriptedExecute(_ok())
    outcome = RecoveryPolicy(execute, remove_lock=lambda _p: True).run()
    assert execute.calls == [()]
    assert outcome.exit_code == 0
    assert [a.label for a in outcome.attempts] == [AttemptLabel.NORMAL]


def test_must_run_resync_with_auto_resync_adds_one_resync_attempt():
    execute = _ScriptedExecute(_fail("ERROR : Bisync aborted. Must run --resync to recover."), _ok())
    outcome = RecoveryPolicy(execute, remove_lock=lambda _p: False, auto_resync=True).run()

    assert execute.calls == [(), ("--resync",)]
    assert [a.label for a in outcome.attempts] == [AttemptLabel.NORMAL, AttemptLabel.RESYNC_RECOVERY]
    assert outcome.exit_code == 0


def test_must_run_resync_without_auto_resync_keeps_failure_and_notes():
    notes: list[str] = []
    execute = _ScriptedExecute(_fail("ERROR : must run --resync", code=2))
    outcome = RecoveryPolicy(execute, remove_lock=lambda _p: False, auto_resync=False, on_note=notes.append).run()

    assert execute.calls == [()]
    assert outcome.exit_code == 2
    assert notes == [RESYNC_DISABLED_NOTE]


def test_prior_lock_removed_then_retried_once():
    removed: list[str] = []

    def remove_lock(path: str) -> bool:
        removed.append(path)
        return True

    execute = _ScriptedExecute(_fail(LOCK_MSG), _ok())
    outcome = RecoveryPolicy(execute, remove_lock=remove_lock).run()

    assert removed == ["/home/u/.cache/rclone/bisync/a..b.lck"]
    assert [a.label for a in outcome.attempts] == [AttemptLabel.NORMAL, AttemptLabel.RETRY_AFTER_LOCK_CLEANUP]
    assert outcome.exit_code == 0


def test_prior_lock_not_removed_means_no_lock_retry():
    execute = _ScriptedExecute(_fail(LOCK_MSG))
    outcome = RecoveryPolicy(execute, remove_lock=lambda _p: False).run()
    assert execute.calls == [()]
    assert outcome.exit_code == 7


def test_lock_retry_then_resync_caps_at_three_attempts():
    seen: list[AttemptLabel] = []
    execute = _ScriptedExecute(
        _fail(LOCK_MSG),
        _fail("ERROR : Bisync aborted. Must run --resync to recover."),
        _fail("ERROR : still broken", code=9),
    )
    outcome = RecoveryPolicy(
        execute,
        remove_lock=lambda _p: True,
        auto_resync=True,
        on_attempt=lambda a: seen.append(a.label),
    ).run()

    assert execute.calls == [(), (), ("--resync",)]
    assert seen == [
        AttemptLabel.NORMAL,
        AttemptLabel.RETRY_AFTER_LOCK_CLEANUP,
        AttemptLabel.RESYNC_RECOVERY,
    ]
    assert outcome.exit_code == 9
    assert outcome.stderr == "ERROR : still broken"


def test_plain_failure_without_signals_is_not_retried():
    execute = _ScriptedExecute(_fail("ERROR : permission denied", code=1))
    outcome = RecoveryPolicy(execute, remove_lock=lambda _p: True).run()
    assert execute.calls == [()]
    assert outcome.exit_code == 1
