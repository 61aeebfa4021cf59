"""SLURM implementation of the scheduler boundary.

Renders one sbatch script per attempt, submits it with ``sbatch
--parsable`` (optionally after a predecessor job), and queries or cancels
jobs through ``squeue``/``sacct``/``scancel``.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from datetime import datetime
from textwrap import dedent
from typing import TYPE_CHECKING, Sequence

from app_config import SlurmConfig
from .base import (
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_RUNNING,
    JOB_UNKNOWN,
    JobHandle,
    SchedulerError,
)

if TYPE_CHECKING:
    from runner.descriptor import JobDescriptor

logger = logging.getLogger(__name__)

SCRIPT_DIR = "slurm"

_SQUEUE_STATES = {
    "PENDING": JOB_PENDING,
    "CONFIGURING": JOB_PENDING,
    "REQUEUED": JOB_PENDING,
    "RESV_DEL_HOLD": JOB_PENDING,
    "RUNNING": JOB_RUNNING,
    "COMPLETING": JOB_RUNNING,
    "SUSPENDED": JOB_RUNNING,
    "STOPPED": JOB_RUNNING,
}
_SACCT_STATES = {
    "COMPLETED": JOB_COMPLETED,
    "CANCELLED": JOB_CANCELLED,
    "FAILED": JOB_FAILED,
    "TIMEOUT": JOB_FAILED,
    "NODE_FAIL": JOB_FAILED,
    "OUT_OF_MEMORY": JOB_FAILED,
    "PREEMPTED": JOB_FAILED,
    "BOOT_FAIL": JOB_FAILED,
    "DEADLINE": JOB_FAILED,
    "PENDING": JOB_PENDING,
    "RUNNING": JOB_RUNNING,
}


def _run_command(argv: Sequence[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        list(argv),
        capture_output=True,
        text=True,
        check=False,
    )


def render_attempt_script(descriptor: "JobDescriptor", *, resume: bool) -> str:
    """Render the sbatch script that runs one controller attempt."""
    resources = descriptor.resources
    directives = [
        f"--job-name={descriptor.name}",
        f"--time={descriptor.time_limit}",
        f"--nodes={resources.nodes}",
        f"--ntasks={resources.ntasks}",
        f"--cpus-per-task={resources.cpus_per_task}",
        f"--output={os.path.join(descriptor.workdir, SCRIPT_DIR, 'slurm-%j.out')}",
    ]
    if resources.partition:
        directives.append(f"--partition={resources.partition}")
    if resources.account:
        directives.append(f"--account={resources.account}")
    if resources.gpus:
        directives.append(f"--gres=gpu:{resources.gpus}")
    if resources.mem:
        directives.append(f"--mem={resources.mem}")
    directives.extend(resources.extra_directives)

    env_lines = ["module purge"]
    env_lines.extend(f"module load {module}" for module in descriptor.environment.module_loads)
    env_lines.extend(descriptor.environment.setup_lines)

    attempt_cmd = [
        *descriptor.controller_command,
        "attempt",
        "--workdir",
        descriptor.workdir,
    ]
    if resume:
        attempt_cmd.append("--resume")

    header = "\n".join(f"#SBATCH {directive}" for directive in directives)
    body = "\n".join(env_lines)
    script = dedent(
        """\
        #!/bin/bash
        {header}

        # chain: {chain_id} ({mode})
        {body}

        export OMP_NUM_THREADS="${{SLURM_CPUS_PER_TASK:-1}}"
        cd {workdir}
        echo "mdchain attempt for {chain_id} on ${{SLURMD_NODENAME:-?}} (job ${{SLURM_JOB_ID:-?}}) at $(date)"
        exec {attempt}
        """
    )
    return script.format(
        header=header,
        chain_id=descriptor.chain_id,
        mode="resume" if resume else "initial",
        body=body,
        workdir=shlex.quote(descriptor.workdir),
        attempt=shlex.join(attempt_cmd),
    )


class SlurmScheduler:
    """Scheduler backed by the SLURM command-line tools."""

    name = "slurm"

    def __init__(self, config: SlurmConfig | None = None) -> None:
        self._config = config or SlurmConfig()

    def submit(
        self,
        descriptor: "JobDescriptor",
        *,
        resume: bool,
        after: str | None = None,
    ) -> JobHandle:
        script = render_attempt_script(descriptor, resume=resume)
        script_dir = os.path.join(descriptor.workdir, SCRIPT_DIR)
        os.makedirs(script_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        suffix = "resume" if resume else "initial"
        script_path = os.path.join(script_dir, f"attempt_{timestamp}_{suffix}.sbatch")
        with open(script_path, "w", encoding="utf-8") as handle:
            handle.write(script)

        argv = [self._config.sbatch, "--parsable"]
        if after:
            argv.append(f"--dependency=afterany:{after}")
        argv.append(script_path)
        proc = _run_command(argv)
        if proc.returncode != 0:
            raise SchedulerError(
                f"sbatch failed (exit_code={proc.returncode}): {proc.stderr.strip()}"
            )
        job_id = _parse_sbatch_output(proc.stdout)
        logger.info(
            "Submitted %s attempt as job %s%s",
            suffix,
            job_id,
            f" (after {after})" if after else "",
        )
        return JobHandle(job_id=job_id, script_path=script_path, resume=resume, after=after)

    def status(self, job_id: str) -> str:
        proc = _run_command([self._config.squeue, "-h", "-j", str(job_id), "-o", "%T"])
        if proc.returncode == 0:
            state = proc.stdout.strip().splitlines()
            if state:
                return _SQUEUE_STATES.get(state[0].strip().upper(), JOB_UNKNOWN)

        proc = _run_command(
            [self._config.sacct, "-n", "-X", "-P", "-j", str(job_id), "-o", "State"]
        )
        if proc.returncode != 0:
            return JOB_UNKNOWN
        lines = [line.strip() for line in proc.stdout.splitlines() if line.strip()]
        if not lines:
            return JOB_UNKNOWN
        # "CANCELLED by 1234" -> "CANCELLED"
        raw = lines[0].split()[0].upper()
        return _SACCT_STATES.get(raw, JOB_UNKNOWN)

    def cancel(self, job_id: str) -> None:
        proc = _run_command([self._config.scancel, str(job_id)])
        if proc.returncode != 0:
            raise SchedulerError(
                f"scancel {job_id} failed (exit_code={proc.returncode}): {proc.stderr.strip()}"
            )
        logger.info("Cancelled job %s", job_id)


def _parse_sbatch_output(stdout: str) -> str:
    text = (stdout or "").strip()
    if not text:
        raise SchedulerError("sbatch returned no job id")
    # --parsable prints "<jobid>" or "<jobid>;<cluster>"
    job_id = text.splitlines()[-1].split(";")[0].strip()
    if not job_id.isdigit():
        raise SchedulerError(f"Unexpected sbatch output: {text!r}")
    return job_id


__all__ = ["SCRIPT_DIR", "SlurmScheduler", "render_attempt_script"]
