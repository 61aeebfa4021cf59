from .base import (
    ACTIVE_JOB_STATES,
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_RUNNING,
    JOB_UNKNOWN,
    JobHandle,
    Scheduler,
    SchedulerError,
)
from .slurm import SlurmScheduler, render_attempt_script

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
    "SlurmScheduler",
    "render_attempt_script",
]
