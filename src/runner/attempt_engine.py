"""One link of the self-resubmitting production chain.

Runs a single bounded mdrun attempt, derives its Termination Signal from the
Run State, and queues the next link when the target was not reached.
"""

from __future__ import annotations

import logging
import os
import traceback
from datetime import datetime, timezone
from typing import Callable

from md_engine.errors import CheckpointCorruptError, MissingInputError
from md_engine.mdrun import MdrunRequest, MdrunResult, execute_mdrun
from md_engine.run_state import RunStateSnapshot, inspect_checkpoint, inspect_run_state
from scheduler.base import ACTIVE_JOB_STATES, Scheduler, SchedulerError
from .descriptor import JobDescriptor
from .run_lock import acquire_attempt_lock
from .state_machine import (
    SIGNAL_COMPLETED,
    SIGNAL_FAILED,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_INCOMPLETE,
    STATUS_RUNNING,
    ChainState,
    TerminationDecision,
    classify_attempt,
    finalize_state,
    is_target_reached,
    load_or_create_state,
    record_attempt,
    record_submission,
    save_state,
    stop_requested,
    update_status,
    write_report_files,
)
from .types import AttemptRecord

logger = logging.getLogger(__name__)

Executor = Callable[[MdrunRequest], MdrunResult]
Inspector = Callable[[str, str], RunStateSnapshot]

ATTEMPT_OUTPUT_DIR = "attempts"


def run_chain_attempt(
    descriptor: JobDescriptor,
    scheduler: Scheduler,
    *,
    resume: bool,
    job_id: str | None = None,
    executor: Executor = execute_mdrun,
    inspect: Inspector = inspect_run_state,
) -> ChainState:
    """Execute one attempt of the chain and decide what happens next.

    1. Skip everything if the chain was cancelled or already reached its target
    2. Validate the tpr (and the checkpoint when resuming)
    3. Run mdrun under the attempt lock with the wall-clock budget
    4. Classify the attempt as completed / incomplete / failed
    5. On incomplete, queue the next attempt after this job

    Returns:
        The persisted chain state after this attempt.
    """
    workdir = descriptor.workdir
    state = load_or_create_state(descriptor.chain_id, workdir, descriptor.target_steps)

    try:
        if stop_requested(workdir) or state.get("status") == STATUS_CANCELLED:
            logger.info("Chain %s was cancelled; not starting an attempt.", descriptor.chain_id)
            if state.get("status") != STATUS_CANCELLED:
                state = finalize_state(state, STATUS_CANCELLED, reason="stop_requested")
            save_state(workdir, state)
            return state

        before = inspect(workdir, descriptor.deffnm)
        if is_target_reached(before.steps, descriptor.target_steps):
            logger.info(
                "Run state already at %d/%d steps; nothing to do.",
                before.steps,
                descriptor.target_steps,
            )
            state = finalize_state(
                state, STATUS_COMPLETED, reason="already_completed", steps=before.steps
            )
            save_state(workdir, state)
            return state

        if state.get("status") == STATUS_FAILED:
            logger.error(
                "Chain %s is marked failed; refusing to run another attempt.",
                descriptor.chain_id,
            )
            return state

        job_active = None
        if job_id is not None:
            def job_active(other: str) -> bool:
                return other != job_id and scheduler.status(other) in ACTIVE_JOB_STATES

        with acquire_attempt_lock(workdir, job_id=job_id, job_active=job_active):
            state = _run_locked_attempt(
                descriptor,
                scheduler,
                state,
                before=before,
                resume=resume,
                job_id=job_id,
                executor=executor,
                inspect=inspect,
            )
        return state
    finally:
        write_report_files(state, workdir)


def _run_locked_attempt(
    descriptor: JobDescriptor,
    scheduler: Scheduler,
    state: ChainState,
    *,
    before: RunStateSnapshot,
    resume: bool,
    job_id: str | None,
    executor: Executor,
    inspect: Inspector,
) -> ChainState:
    workdir = descriptor.workdir
    attempts = state.get("attempts") or []
    attempt_num = len(attempts) + 1
    attempt: AttemptRecord = {
        "index": attempt_num,
        "job_id": job_id,
        "resumed": resume,
        "started_at": datetime.now(timezone.utc).isoformat(),
        "steps_before": before.steps,
        "target_steps": descriptor.target_steps,
        "exit_code": None,
        "resubmitted_job_id": None,
    }

    state["active_job_id"] = job_id
    state["pending_job_id"] = None
    state = update_status(state, STATUS_RUNNING)
    save_state(workdir, state)

    try:
        request = _build_request(descriptor, resume=resume, attempt_num=attempt_num)
        logger.info(
            "Starting attempt %d of chain %s (%s, %d/%d steps, maxh=%.3f)",
            attempt_num,
            descriptor.chain_id,
            "resume" if resume else "initial",
            before.steps,
            descriptor.target_steps,
            descriptor.maxh_hours,
        )
        result = executor(request)
        attempt["exit_code"] = result.exit_code
    except (MissingInputError, CheckpointCorruptError) as exc:
        return _fail_attempt(state, attempt, workdir, str(exc), before.steps)
    except OSError as exc:
        attempt["error"] = traceback.format_exc()[:2000]
        return _fail_attempt(state, attempt, workdir, f"launch_error: {exc}", before.steps)

    after = inspect(workdir, descriptor.deffnm)
    decision = classify_attempt(
        steps=after.steps,
        target_steps=descriptor.target_steps,
        exit_code=result.exit_code,
        checkpoint_valid=after.checkpoint.valid,
        checkpoint_reason=after.checkpoint.reason,
        wallclock_stop=after.progress.wallclock_stop,
        finished=after.progress.finished,
        steps_before=before.steps,
    )
    attempt.update(
        {
            "ended_at": datetime.now(timezone.utc).isoformat(),
            "signal": decision.signal,
            "reason": decision.reason,
            "steps_after": after.steps,
            "checkpoint_sha256": after.checkpoint.sha256,
        }
    )
    logger.info(
        "Attempt %d finished: signal=%s reason=%s steps=%d/%d",
        attempt_num,
        decision.signal,
        decision.reason,
        after.steps,
        descriptor.target_steps,
    )

    if decision.signal == SIGNAL_COMPLETED:
        state = record_attempt(state, attempt)
        state = finalize_state(state, STATUS_COMPLETED, reason=decision.reason, steps=after.steps)
        save_state(workdir, state)
        return state

    if decision.signal == SIGNAL_FAILED:
        logger.error(
            "Attempt %d failed (%s); chain %s stops here. Run state left in %s",
            attempt_num,
            decision.reason,
            descriptor.chain_id,
            workdir,
        )
        state = record_attempt(state, attempt)
        state = finalize_state(state, STATUS_FAILED, reason=decision.reason, steps=after.steps)
        save_state(workdir, state)
        return state

    state = update_status(state, STATUS_INCOMPLETE)
    return _resubmit(descriptor, scheduler, state, attempt, decision, job_id=job_id, inspect=inspect)


def _resubmit(
    descriptor: JobDescriptor,
    scheduler: Scheduler,
    state: ChainState,
    attempt: AttemptRecord,
    decision: TerminationDecision,
    *,
    job_id: str | None,
    inspect: Inspector,
) -> ChainState:
    """Queue the next link unless the chain was completed or cancelled meanwhile."""
    workdir = descriptor.workdir
    state = record_attempt(state, attempt)

    if stop_requested(workdir):
        logger.info("Stop requested; not resubmitting chain %s.", descriptor.chain_id)
        state = finalize_state(
            state, STATUS_CANCELLED, reason="cancelled_before_resubmit",
            steps=attempt.get("steps_after"),
        )
        save_state(workdir, state)
        return state

    latest = inspect(workdir, descriptor.deffnm)
    if is_target_reached(latest.steps, descriptor.target_steps):
        logger.info("Run state reached the target before resubmission; not resubmitting.")
        state = finalize_state(
            state, STATUS_COMPLETED, reason="completed_before_resubmit", steps=latest.steps
        )
        save_state(workdir, state)
        return state

    try:
        handle = scheduler.submit(descriptor, resume=True, after=job_id)
    except SchedulerError as exc:
        logger.error("Resubmission of chain %s failed: %s", descriptor.chain_id, exc)
        state = finalize_state(
            state,
            STATUS_FAILED,
            reason=f"resubmit_failed: {exc}",
            steps=latest.steps,
            extra={"last_attempt_signal": decision.signal},
        )
        save_state(workdir, state)
        return state

    attempt["resubmitted_job_id"] = handle.job_id
    state["active_job_id"] = None
    state = record_submission(state, handle.job_id)
    save_state(workdir, state)
    logger.info(
        "Chain %s resubmitted as job %s (%d/%d steps, %s).",
        descriptor.chain_id,
        handle.job_id,
        latest.steps,
        descriptor.target_steps,
        decision.reason,
    )
    return state


def _build_request(descriptor: JobDescriptor, *, resume: bool, attempt_num: int) -> MdrunRequest:
    if not os.path.isfile(descriptor.tpr_path):
        raise MissingInputError(descriptor.tpr_path, stage="md")

    resume_checkpoint = None
    if resume:
        checkpoint = inspect_checkpoint(descriptor.checkpoint_path)
        if not checkpoint.valid:
            raise CheckpointCorruptError(checkpoint.path, checkpoint.reason)
        resume_checkpoint = f"{descriptor.deffnm}.cpt"

    output_path = os.path.join(
        descriptor.workdir, ATTEMPT_OUTPUT_DIR, f"attempt_{attempt_num:03d}.out"
    )
    return MdrunRequest(
        workdir=descriptor.workdir,
        deffnm=descriptor.deffnm,
        tpr=descriptor.tpr,
        target_steps=descriptor.target_steps,
        maxh_hours=descriptor.maxh_hours,
        resume_checkpoint=resume_checkpoint,
        binary=descriptor.gmx_binary,
        ntomp=descriptor.ntomp,
        extra_args=tuple(descriptor.mdrun_extra_args),
        output_path=output_path,
    )


def _fail_attempt(
    state: ChainState,
    attempt: AttemptRecord,
    workdir: str,
    reason: str,
    steps: int,
) -> ChainState:
    logger.error("Attempt %s failed before completion: %s", attempt.get("index"), reason)
    attempt.update(
        {
            "ended_at": datetime.now(timezone.utc).isoformat(),
            "signal": SIGNAL_FAILED,
            "reason": reason,
            "steps_after": steps,
        }
    )
    state = record_attempt(state, attempt)
    state = finalize_state(state, STATUS_FAILED, reason=reason, steps=steps)
    save_state(workdir, state)
    return state
