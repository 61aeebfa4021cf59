"""Thin subprocess wrapper around the ``gmx`` binary."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Sequence

from .errors import ExternalToolError, MissingInputError

logger = logging.getLogger(__name__)

_STDERR_TAIL_LINES = 25


@dataclass(frozen=True)
class GmxResult:
    command: list[str]
    exit_code: int
    stdout: str
    stderr: str


class GmxRunner:
    """Run ``gmx <tool>`` commands inside a working directory.

    Every tool invocation is logged; a non-zero exit raises
    ``ExternalToolError`` carrying the tail of stderr.
    """

    def __init__(self, binary: str = "gmx") -> None:
        self.binary = binary

    def ensure_available(self) -> str:
        resolved = shutil.which(self.binary)
        if resolved is None:
            raise ExternalToolError(
                f"GROMACS binary '{self.binary}' not found in PATH (load the gromacs module first)"
            )
        return resolved

    def run(
        self,
        tool: str,
        args: Sequence[str],
        *,
        cwd: str,
        stdin_text: str | None = None,
        check: bool = True,
    ) -> GmxResult:
        command = [self.binary, tool, *[str(arg) for arg in args]]
        logger.info("Running: %s (cwd=%s)", " ".join(command), cwd)
        completed = subprocess.run(
            command,
            cwd=cwd,
            input=stdin_text,
            capture_output=True,
            text=True,
            check=False,
        )
        result = GmxResult(
            command=command,
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if check and result.exit_code != 0:
            raise ExternalToolError(
                f"gmx {tool} failed",
                command=command,
                exit_code=result.exit_code,
                stderr_tail=_tail(result.stderr),
            )
        return result


def require_inputs(paths: Sequence[str], *, stage: str | None = None) -> None:
    """Raise ``MissingInputError`` for the first path that is not a file."""
    for path in paths:
        if not os.path.isfile(path):
            raise MissingInputError(path, stage=stage)


def _tail(text: str) -> str:
    lines = text.strip().splitlines()
    return "\n".join(lines[-_STDERR_TAIL_LINES:])


__all__ = ["GmxResult", "GmxRunner", "require_inputs"]
