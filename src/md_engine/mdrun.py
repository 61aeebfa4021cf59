"""Stable controller-facing entrypoint for one ``gmx mdrun`` attempt."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass, field
from typing import Sequence

logger = logging.getLogger(__name__)

# Exit statuses produced when the scheduler signals mdrun near the time limit.
WALLCLOCK_SIGNALS = (signal.SIGTERM, signal.SIGUSR1, signal.SIGINT)
WALLCLOCK_EXIT_CODES = frozenset(
    {-int(sig) for sig in WALLCLOCK_SIGNALS} | {128 + int(sig) for sig in WALLCLOCK_SIGNALS}
)
_FORWARDED_SIGNALS = (signal.SIGTERM, signal.SIGUSR1)


@dataclass(frozen=True)
class MdrunRequest:
    workdir: str
    deffnm: str
    tpr: str
    target_steps: int
    maxh_hours: float
    resume_checkpoint: str | None = None
    binary: str = "gmx"
    ntomp: int | None = None
    extra_args: Sequence[str] = field(default_factory=tuple)
    output_path: str | None = None


@dataclass(frozen=True)
class MdrunResult:
    command: list[str]
    exit_code: int
    duration_sec: float
    output_path: str | None

    @property
    def wallclock_signalled(self) -> bool:
        return self.exit_code in WALLCLOCK_EXIT_CODES


def build_mdrun_command(request: MdrunRequest) -> list[str]:
    command = [
        request.binary,
        "mdrun",
        "-deffnm",
        request.deffnm,
        "-s",
        request.tpr,
        "-nsteps",
        str(int(request.target_steps)),
        "-maxh",
        f"{request.maxh_hours:.4f}",
    ]
    if request.resume_checkpoint:
        command.extend(["-cpi", request.resume_checkpoint])
    if request.ntomp:
        command.extend(["-ntomp", str(int(request.ntomp))])
    command.extend(str(arg) for arg in request.extra_args)
    return command


def format_returncode(returncode: int | None) -> str:
    if returncode is None:
        return "unknown"
    if returncode < 0:
        try:
            signal_name = signal.Signals(-returncode).name
        except ValueError:
            signal_name = f"SIG{-returncode}"
        return f"signal {signal_name} ({returncode})"
    return str(returncode)


def execute_mdrun(request: MdrunRequest) -> MdrunResult:
    """Run mdrun to exit and return its exit status.

    SIGTERM/SIGUSR1 delivered to the controller while mdrun runs are
    forwarded to the child so it can write a final checkpoint.
    """
    command = build_mdrun_command(request)
    logger.info("Starting mdrun: %s (cwd=%s)", " ".join(command), request.workdir)
    started = time.monotonic()

    output_handle = None
    if request.output_path:
        os.makedirs(os.path.dirname(request.output_path) or ".", exist_ok=True)
        output_handle = open(request.output_path, "a", encoding="utf-8")
    try:
        process = subprocess.Popen(
            command,
            cwd=request.workdir,
            stdin=subprocess.DEVNULL,
            stdout=output_handle,
            stderr=subprocess.STDOUT if output_handle is not None else None,
        )

        def _forward(signum, _frame):
            logger.warning(
                "Received %s; forwarding to mdrun (pid=%d)",
                signal.Signals(signum).name,
                process.pid,
            )
            process.send_signal(signum)

        previous = {sig: signal.signal(sig, _forward) for sig in _FORWARDED_SIGNALS}
        try:
            exit_code = process.wait()
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
    finally:
        if output_handle is not None:
            output_handle.close()

    duration = time.monotonic() - started
    logger.info(
        "mdrun exited with %s after %.1f s",
        format_returncode(exit_code),
        duration,
    )
    return MdrunResult(
        command=command,
        exit_code=exit_code,
        duration_sec=duration,
        output_path=request.output_path,
    )


__all__ = [
    "MdrunRequest",
    "MdrunResult",
    "WALLCLOCK_EXIT_CODES",
    "build_mdrun_command",
    "execute_mdrun",
    "format_returncode",
]
