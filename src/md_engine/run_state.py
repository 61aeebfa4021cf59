"""Read-only inspection of an mdrun Run State (checkpoint + progress log).

The controller never writes these files; it only needs two facts from them:
how many integration steps the log records, and whether the checkpoint is
usable for ``mdrun -cpi``.
"""

from __future__ import annotations

import glob
import hashlib
import os
import re
import struct
from dataclasses import dataclass

# First XDR int of every GROMACS checkpoint file.
CPT_MAGIC = 171817
_MIN_CHECKPOINT_BYTES = 8

_ENERGY_HEADER_RE = re.compile(r"^\s*Step\s+Time\s*$")
_STEP_VALUE_RE = re.compile(r"^\s*(\d+)\s+[-+0-9.eE]+\s*$")
_CHECKPOINT_STEP_RE = re.compile(r"Writing checkpoint, step\s+(\d+)")
_MAXH_STOP_RE = re.compile(r"^\s*Step\s+(\d+):\s+Run time exceeded", re.IGNORECASE)
_SIGNAL_STOP_RE = re.compile(r"Received the (?:TERM|INT|USR1) signal", re.IGNORECASE)
_FINISHED_RE = re.compile(r"Finished mdrun on rank 0")
_STARTED_RE = re.compile(r"Started mdrun on rank 0")


@dataclass(frozen=True)
class CheckpointStatus:
    path: str
    exists: bool
    valid: bool
    reason: str
    size_bytes: int = 0
    sha256: str | None = None


@dataclass(frozen=True)
class LogProgress:
    steps: int
    log_paths: tuple[str, ...]
    wallclock_stop: bool
    finished: bool


@dataclass(frozen=True)
class RunStateSnapshot:
    progress: LogProgress
    checkpoint: CheckpointStatus

    @property
    def steps(self) -> int:
        return self.progress.steps


def checkpoint_path(workdir: str, deffnm: str) -> str:
    return os.path.join(workdir, f"{deffnm}.cpt")


def inspect_checkpoint(path: str) -> CheckpointStatus:
    """Check that ``path`` starts with the GROMACS checkpoint magic number."""
    if not os.path.isfile(path):
        return CheckpointStatus(path=path, exists=False, valid=False, reason="missing")
    try:
        size = os.path.getsize(path)
        with open(path, "rb") as handle:
            header = handle.read(4)
            digest = hashlib.sha256(header)
            for chunk in iter(lambda: handle.read(1 << 20), b""):
                digest.update(chunk)
    except OSError as exc:
        return CheckpointStatus(
            path=path, exists=True, valid=False, reason=f"unreadable: {exc}"
        )
    if size < _MIN_CHECKPOINT_BYTES:
        return CheckpointStatus(
            path=path, exists=True, valid=False, reason="truncated", size_bytes=size
        )
    (magic,) = struct.unpack(">i", header)
    if magic != CPT_MAGIC:
        return CheckpointStatus(
            path=path,
            exists=True,
            valid=False,
            reason=f"bad_magic({magic})",
            size_bytes=size,
        )
    return CheckpointStatus(
        path=path,
        exists=True,
        valid=True,
        reason="ok",
        size_bytes=size,
        sha256=digest.hexdigest(),
    )


def find_log_files(workdir: str, deffnm: str) -> list[str]:
    """Return ``<deffnm>.log`` plus any ``<deffnm>.partNNNN.log`` in part order."""
    paths = []
    main_log = os.path.join(workdir, f"{deffnm}.log")
    if os.path.isfile(main_log):
        paths.append(main_log)
    paths.extend(sorted(glob.glob(os.path.join(workdir, f"{deffnm}.part*.log"))))
    return paths


def read_log_progress(workdir: str, deffnm: str) -> LogProgress:
    """Scan the mdrun logs for the highest integration step they record."""
    log_paths = find_log_files(workdir, deffnm)
    steps = 0
    wallclock_stop = False
    finished = False
    for path in log_paths:
        try:
            with open(path, "r", encoding="utf-8", errors="ignore") as handle:
                lines = handle.readlines()
        except OSError:
            continue
        # Only the flags of the newest part describe the latest attempt.
        wallclock_stop = False
        finished = False
        expect_step_value = False
        for line in lines:
            if expect_step_value:
                expect_step_value = False
                match = _STEP_VALUE_RE.match(line)
                if match:
                    steps = max(steps, int(match.group(1)))
                    continue
            if _ENERGY_HEADER_RE.match(line):
                expect_step_value = True
                continue
            match = _CHECKPOINT_STEP_RE.search(line)
            if match:
                steps = max(steps, int(match.group(1)))
                continue
            match = _MAXH_STOP_RE.match(line)
            if match:
                steps = max(steps, int(match.group(1)))
                wallclock_stop = True
                continue
            if _SIGNAL_STOP_RE.search(line):
                wallclock_stop = True
                continue
            if _FINISHED_RE.search(line):
                finished = True
                continue
            if _STARTED_RE.search(line):
                # Appended continuation: flags restart with each attempt.
                wallclock_stop = False
                finished = False
    return LogProgress(
        steps=steps,
        log_paths=tuple(log_paths),
        wallclock_stop=wallclock_stop,
        finished=finished,
    )


def inspect_run_state(workdir: str, deffnm: str) -> RunStateSnapshot:
    return RunStateSnapshot(
        progress=read_log_progress(workdir, deffnm),
        checkpoint=inspect_checkpoint(checkpoint_path(workdir, deffnm)),
    )


__all__ = [
    "CPT_MAGIC",
    "CheckpointStatus",
    "LogProgress",
    "RunStateSnapshot",
    "checkpoint_path",
    "find_log_files",
    "inspect_checkpoint",
    "inspect_run_state",
    "read_log_progress",
]
