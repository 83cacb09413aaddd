from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from collections.abc import Sequence

logger = logging.getLogger("runner")


@dataclass(frozen=True)
class AttemptOutput:
    exit_code: int
    stdout: str
    stderr: str


class BisyncSpawnError(RuntimeError):
    """The OS could not launch the sync tool at all."""


def run_attempt(argv: Sequence[str]) -> AttemptOutput:
    """Run one invocation to completion. No timeout: a hung rclone hangs the run."""
    logger.debug("bisync_exec argv=%s", " ".join(argv))
    try:
        proc = subprocess.run(list(argv), capture_output=True, check=False)
    except OSError as e:
        raise BisyncSpawnError(f"spawn_failed: {argv[0]}: {e}") from e

    # Negative return codes mean the process died from a signal.
    code = proc.returncode if proc.returncode >= 0 else -1
    return AttemptOutput(
        exit_code=code,
        stdout=proc.stdout.decode("utf-8", errors="replace"),
        stderr=proc.stderr.decode("utf-8", errors="replace"),
    )
