from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from runner.descriptor import JobDescriptor


JOB_PENDING = "pending"
JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
JOB_CANCELLED = "cancelled"
JOB_UNKNOWN = "unknown"

ACTIVE_JOB_STATES = {JOB_PENDING, JOB_RUNNING}


class SchedulerError(RuntimeError):
    """Raised when a scheduler command (submit, query, cancel) fails."""


@dataclass(frozen=True)
class JobHandle:
    job_id: str
    script_path: str | None = None
    resume: bool = False
    after: str | None = None


class Scheduler(Protocol):
    name: str

    def submit(
        self,
        descriptor: "JobDescriptor",
        *,
        resume: bool,
        after: str | None = None,
    ) -> JobHandle: ...

    def status(self, job_id: str) -> str: ...

    def cancel(self, job_id: str) -> None: ...


__all__ = [
    "ACTIVE_JOB_STATES",
    "JOB_CANCELLED",
    "JOB_COMPLETED",
    "JOB_FAILED",
    "JOB_PENDING",
    "JOB_RUNNING",
    "JOB_UNKNOWN",
    "JobHandle",
    "Scheduler",
    "SchedulerError",
]
