"""Text parsers for rclone bisync output.

rclone offers no machine-readable summary, so everything here is pattern
matching on captured stdout/stderr. Keep all wording assumptions in this
module.
"""

from __future__ import annotations

import re
from collections import deque

MAX_PREVIEW_LINES = 6
REMOTE_SUMMARY_KEYWORDS = ("remote", "drive", "gdrive", "sync")

# 2026/01/11 22:25:26 INFO  : Path1:   40 changes:    4 new,   36 newer,    0 older,    0 deleted
PATH_CHANGES_RE = re.compile(r"(?:Path1|Path2):\s*(\d+)\s+changes")


def sum_path_changes(text: str) -> tuple[int, bool]:
    """Total of every `PathN: <n> changes:` counter, and whether any was seen."""
    total = 0
    saw_any = False
    for line in text.splitlines():
        for match in PATH_CHANGES_RE.finditer(line):
            total += int(match.group(1))
            saw_any = True
    return total, saw_any


def extract_last_number_after_label(text: str, label: str) -> int | None:
    """Count from the last `<label> X / N, P%` line, preferring lines at 100%.

    `Transferred:  52 / 262, 20%` yields 262. Byte-progress lines such as
    `Transferred: 72.2 MiB / 73.2 MiB, 99%` are skipped.
    """
    last_complete: int | None = None
    last_any: int | None = None

    for line in text.splitlines():
        line = line.strip()
        if not line.startswith(label):
            continue
        rest = line[len(label):].strip()
        _, slash, after_slash = rest.partition(" / ")
        if not slash:
            continue
        count_str, comma, _ = after_slash.partition(",")
        if not comma:
            continue
        try:
            count = int(count_str.strip())
        except ValueError:
            continue
        if "100%" in rest:
            last_complete = count
        else:
            last_any = count

    return last_complete if last_complete is not None else last_any


def detect_changed_count(stdout: str, stderr: str) -> int | None:
    combined = f"{stdout}\n{stderr}"

    # Per-pair "PathN: X changes:" counters are the reliable signal and sum across pairs.
    changes_total, saw_changes = sum_path_changes(combined)
    if saw_changes:
        return changes_total

    # Fallback for logs without change counters; ignores deletions.
    transferred = extract_last_number_after_label(combined, "Transferred:")
    copied = extract_last_number_after_label(combined, "Copied:")
    if transferred is not None and copied is not None:
        return transferred + copied
    if transferred is not None:
        return transferred
    return copied


def error_summary(exit_code: int, stderr: str) -> str | None:
    stripped = stderr.strip()
    if stripped:
        return stripped.splitlines()[-1].strip()
    if exit_code != 0:
        return f"Exited with code {exit_code}"
    return None


def detect_remote_summary(stdout: str, stderr: str) -> str | None:
    for line in stdout.splitlines() + stderr.splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue
        lowered = trimmed.lower()
        if any(keyword in lowered for keyword in REMOTE_SUMMARY_KEYWORDS):
            return trimmed
    return None


def preview_lines(stdout: str, stderr: str, limit: int = MAX_PREVIEW_LINES) -> list[str]:
    window: deque[str] = deque(maxlen=limit)
    for line in stdout.splitlines() + stderr.splitlines():
        trimmed = line.strip()
        if trimmed:
            window.append(trimmed)
    return list(window)
