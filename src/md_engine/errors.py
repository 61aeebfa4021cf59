"""Failure taxonomy for stages and attempts that call ``gmx``."""

from __future__ import annotations

from typing import Sequence


class MissingInputError(RuntimeError):
    """Raised when an upstream artifact a stage depends on is absent."""

    def __init__(self, path: str, stage: str | None = None) -> None:
        self.path = str(path)
        self.stage = stage
        where = f" (stage '{stage}')" if stage else ""
        super().__init__(f"Required input not found{where}: {self.path}")


class ExternalToolError(RuntimeError):
    """Raised when ``gmx`` exits non-zero for a reason other than wall-clock exhaustion."""

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] | None = None,
        exit_code: int | None = None,
        stderr_tail: str | None = None,
    ) -> None:
        self.command = list(command) if command else []
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail or ""
        parts = [message]
        if exit_code is not None:
            parts.append(f"exit_code={exit_code}")
        if self.command:
            parts.append("command=" + " ".join(self.command))
        text = " | ".join(parts)
        if self.stderr_tail:
            text = f"{text}\n{self.stderr_tail}"
        super().__init__(text)


class CheckpointCorruptError(ExternalToolError):
    """Raised when a checkpoint required for continuation is missing or unreadable."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Checkpoint unusable ({reason}): {self.path}")


__all__ = ["CheckpointCorruptError", "ExternalToolError", "MissingInputError"]
