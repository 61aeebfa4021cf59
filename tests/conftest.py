from __future__ import annotations

import os
import struct
from pathlib import Path

import pytest

from app_config import AppConfig, RuntimeConfig
from md_engine.mdrun import MdrunRequest, MdrunResult
from md_engine.run_state import CPT_MAGIC, read_log_progress
from runner.attempt_engine import run_chain_attempt
from runner.descriptor import build_descriptor, save_descriptor
from scheduler.base import JOB_COMPLETED, JOB_PENDING, JOB_RUNNING, JobHandle, SchedulerError


def write_checkpoint(path: Path, magic: int = CPT_MAGIC, payload: bytes = b"\x00" * 64) -> None:
    path.write_bytes(struct.pack(">i", magic) + payload)


def append_log(path: Path, lines: list[str]) -> None:
    with open(path, "a", encoding="utf-8") as handle:
        handle.write("\n".join(lines) + "\n")


class FakeScheduler:
    """In-memory stand-in for SLURM: a FIFO of submitted attempts."""

    name = "fake"

    def __init__(self, fail_submit: bool = False) -> None:
        self.fail_submit = fail_submit
        self.queue: list[JobHandle] = []
        self.submitted: list[JobHandle] = []
        self.cancelled: list[str] = []
        self.running: str | None = None
        self._next_id = 1000

    def submit(self, descriptor, *, resume, after=None):
        if self.fail_submit:
            raise SchedulerError("sbatch failed (exit_code=1): queue full")
        self._next_id += 1
        handle = JobHandle(job_id=str(self._next_id), resume=resume, after=after)
        self.queue.append(handle)
        self.submitted.append(handle)
        return handle

    def status(self, job_id):
        if job_id == self.running:
            return JOB_RUNNING
        if any(handle.job_id == job_id for handle in self.queue):
            return JOB_PENDING
        return JOB_COMPLETED

    def cancel(self, job_id):
        self.cancelled.append(job_id)
        self.queue = [handle for handle in self.queue if handle.job_id != job_id]


class FakeMdrun:
    """Advances the Run State by a fixed step increment per attempt."""

    def __init__(self, increment: int, exit_code: int = 0) -> None:
        self.increment = increment
        self.exit_code = exit_code
        self.requests: list[MdrunRequest] = []

    def __call__(self, request: MdrunRequest) -> MdrunResult:
        self.requests.append(request)
        workdir = Path(request.workdir)
        log_path = workdir / f"{request.deffnm}.log"
        steps = read_log_progress(request.workdir, request.deffnm).steps
        append_log(log_path, ["Started mdrun on rank 0 Mon Jan  1 00:00:00 2026"])
        if self.exit_code not in (0, None):
            append_log(log_path, ["Fatal error: simulated crash"])
        else:
            steps = min(steps + self.increment, request.target_steps)
            lines = [f"Writing checkpoint, step {steps} at Mon Jan  1 00:00:00 2026"]
            if steps < request.target_steps:
                lines.append(f"Step {steps}: Run time exceeded 0.990 hours, will terminate the run")
            else:
                lines.append("Finished mdrun on rank 0 Mon Jan  1 00:00:00 2026")
            append_log(log_path, lines)
            write_checkpoint(workdir / f"{request.deffnm}.cpt")
        return MdrunResult(
            command=["gmx", "mdrun"],
            exit_code=self.exit_code,
            duration_sec=0.0,
            output_path=request.output_path,
        )


def drive_chain(descriptor, scheduler: FakeScheduler, executor, max_attempts: int = 100) -> int:
    """Run queued attempts until the queue drains, like the batch system would."""
    runs = 0
    while scheduler.queue and runs < max_attempts:
        handle = scheduler.queue.pop(0)
        scheduler.running = handle.job_id
        run_chain_attempt(
            descriptor,
            scheduler,
            resume=handle.resume,
            job_id=handle.job_id,
            executor=executor,
        )
        scheduler.running = None
        runs += 1
    return runs


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    return AppConfig(runtime=RuntimeConfig(allowed_root=str(tmp_path)))


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    project = tmp_path / "lysozyme"
    md_dir = project / "05_md"
    md_dir.mkdir(parents=True)
    (md_dir / "md.tpr").write_bytes(b"tpr")
    return project


@pytest.fixture
def make_descriptor(project_dir: Path, app_config: AppConfig):
    def _make(target_steps: int, **kwargs):
        descriptor = build_descriptor(
            workdir=os.path.join(str(project_dir), "05_md"),
            target_steps=target_steps,
            app_config=app_config,
            **kwargs,
        )
        save_descriptor(descriptor)
        return descriptor

    return _make
