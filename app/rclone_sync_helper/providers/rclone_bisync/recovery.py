from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from rclone_sync_helper.providers.rclone_bisync.command import RESYNC_FLAG
from rclone_sync_helper.providers.rclone_bisync.executor import AttemptOutput

logger = logging.getLogger("runner")

# Lowercased phrases rclone prints when bisync state can only be fixed by --resync.
RESYNC_SIGNALS = (
    "cannot find prior path1 or path2 listings",
    "must run --resync",
    "bisync aborted",
)
PRIOR_LOCK_MARKER = "prior lock file found:"
RESYNC_DISABLED_NOTE = "Resync required, but auto_resync=false; run with --resync to recover."


def needs_resync(stdout: str, stderr: str) -> bool:
    combined = f"{stdout}\n{stderr}".lower()
    return any(signal in combined for signal in RESYNC_SIGNALS)


def detect_prior_lock_file(stdout: str, stderr: str) -> str | None:
    """Path from rclone's "prior lock file found: <path>" message, if any."""
    for line in stdout.splitlines() + stderr.splitlines():
        _, marker, rest = line.partition(PRIOR_LOCK_MARKER)
        if not marker:
            continue
        words = rest.split()
        if words:
            return words[0]
    return None


class AttemptLabel(str, Enum):
    NORMAL = "normal"
    RETRY_AFTER_LOCK_CLEANUP = "retry_after_lock_cleanup"
    RESYNC_RECOVERY = "resync_recovery"


class RecoveryState(str, Enum):
    NORMAL = "normal"
    LOCK_CLEANUP_RETRY = "lock_cleanup_retry"
    RESYNC_RECOVERY = "resync_recovery"
    DONE = "done"


@dataclass(frozen=True)
class Attempt:
    label: AttemptLabel
    exit_code: int
    stdout: str
    stderr: str
    recovery_args: tuple[str, ...] = ()


@dataclass
class PairOutcome:
    attempts: list[Attempt] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    @property
    def last(self) -> Attempt:
        return self.attempts[-1]

    @property
    def exit_code(self) -> int:
        return self.last.exit_code

    @property
    def stdout(self) -> str:
        return self.last.stdout

    @property
    def stderr(self) -> str:
        return self.last.stderr


class RecoveryPolicy:
    """Per-pair retry state machine.

    NORMAL -> LOCK_CLEANUP_RETRY -> RESYNC_RECOVERY -> DONE, where each
    recovery step runs at most once and only when its signal is present in
    the latest attempt's output. The pair result is the last attempt's.
    """

    def __init__(
        self,
        execute: Callable[[Sequence[str]], AttemptOutput],
        remove_lock: Callable[[str], bool],
        auto_resync: bool = True,
        on_attempt: Callable[[Attempt], None] | None = None,
        on_note: Callable[[str], None] | None = None,
    ):
        self.execute = execute
        self.remove_lock = remove_lock
        self.auto_resync = auto_resync
        self.on_attempt = on_attempt
        self.on_note = on_note

    def _attempt(self, outcome: PairOutcome, label: AttemptLabel, recovery_args: Sequence[str] = ()) -> Attempt:
        out = self.execute(recovery_args)
        attempt = Attempt(
            label=label,
            exit_code=out.exit_code,
            stdout=out.stdout,
            stderr=out.stderr,
            recovery_args=tuple(recovery_args),
        )
        outcome.attempts.append(attempt)
        logger.info("bisync_attempt_finished label=%s exit=%s", label.value, attempt.exit_code)
        if self.on_attempt is not None:
            self.on_attempt(attempt)
        return attempt

    def _note(self, outcome: PairOutcome, text: str):
        outcome.notes.append(text)
        logger.warning("resync_required auto_resync=false")
        if self.on_note is not None:
            self.on_note(text)

    def run(self) -> PairOutcome:
        outcome = PairOutcome()
        state = RecoveryState.NORMAL

        while state is not RecoveryState.DONE:
            if state is RecoveryState.NORMAL:
                last = self._attempt(outcome, AttemptLabel.NORMAL)
                state = RecoveryState.DONE if last.exit_code == 0 else RecoveryState.LOCK_CLEANUP_RETRY

            elif state is RecoveryState.LOCK_CLEANUP_RETRY:
                last = outcome.last
                lock_path = detect_prior_lock_file(last.stdout, last.stderr)
                if lock_path and self.remove_lock(lock_path):
                    last = self._attempt(outcome, AttemptLabel.RETRY_AFTER_LOCK_CLEANUP)
                state = RecoveryState.DONE if last.exit_code == 0 else RecoveryState.RESYNC_RECOVERY

            elif state is RecoveryState.RESYNC_RECOVERY:
                last = outcome.last
                if needs_resync(last.stdout, last.stderr):
                    if self.auto_resync:
                        self._attempt(outcome, AttemptLabel.RESYNC_RECOVERY, [RESYNC_FLAG])
                    else:
                        self._note(outcome, RESYNC_DISABLED_NOTE)
                state = RecoveryState.DONE

        return outcome
