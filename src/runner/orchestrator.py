"""Main orchestration for mdchain production chains."""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from app_config import AppConfig, load_app_config
from commands._helpers import validate_project_dir, validate_workdir
from env_compat import current_slurm_job_id
from md_engine.run_state import inspect_run_state
from mdchain_logging import chain_logging_context
from pipeline.layout import ProjectLayout
from scheduler.base import ACTIVE_JOB_STATES, Scheduler, SchedulerError
from scheduler.slurm import SlurmScheduler
from stage_config import PipelineParams
from .attempt_engine import Executor, run_chain_attempt
from .descriptor import JobDescriptor, build_descriptor, load_descriptor, save_descriptor
from .state_machine import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    clear_stop,
    finalize_state,
    is_target_reached,
    is_terminal,
    load_state,
    new_state,
    record_submission,
    request_stop,
    save_state,
    write_report_files,
)

logger = logging.getLogger(__name__)


def cmd_start(
    project_dir: str,
    target_steps: int | None = None,
    time_limit: str | None = None,
    force: bool = False,
    json_output: bool = False,
    app_config: AppConfig | None = None,
    scheduler: Scheduler | None = None,
) -> int:
    """Create the job descriptor and submit the first attempt of a chain.

    1. Validate the project directory and the production tpr
    2. Refuse if a chain is already queued or running on this Run State
    3. Write ``05_md/job.json``
    4. Skip submission when the Run State already meets the target
    5. Submit the first attempt

    Returns:
        Exit code (0 = submitted or already complete, 1 = failure).
    """
    if app_config is None:
        app_config = load_app_config()
    try:
        project = validate_project_dir(app_config, project_dir)
    except ValueError as exc:
        logger.error("%s", exc)
        return 1

    workdir = ProjectLayout(str(project)).md_dir
    if scheduler is None:
        scheduler = SlurmScheduler(app_config.slurm)

    existing = load_state(workdir) if os.path.isdir(workdir) else None
    if existing is not None and not is_terminal(existing):
        live_job = _live_job_id(existing, scheduler)
        if live_job is not None:
            logger.error(
                "Chain %s is already active (job %s). Cancel it before starting again.",
                existing.get("chain_id"),
                live_job,
            )
            return 1

    descriptor = _resolve_descriptor(
        workdir,
        existing=existing,
        target_steps=target_steps,
        time_limit=time_limit,
        force=force,
        app_config=app_config,
    )
    if descriptor is None:
        return 1
    if not os.path.isfile(descriptor.tpr_path):
        logger.error("Required input not found: %s (run the npt stage first)", descriptor.tpr_path)
        return 1
    save_descriptor(descriptor)

    if existing is not None and existing.get("chain_id") == descriptor.chain_id:
        state = existing
    else:
        state = new_state(descriptor.chain_id, workdir, descriptor.target_steps)

    snapshot = inspect_run_state(workdir, descriptor.deffnm)
    if is_target_reached(snapshot.steps, descriptor.target_steps):
        logger.info(
            "Run state already at %d/%d steps; not submitting.",
            snapshot.steps,
            descriptor.target_steps,
        )
        state = finalize_state(
            state,
            STATUS_COMPLETED,
            reason="already_completed",
            steps=snapshot.steps,
            extra={"skipped_submission": True},
        )
        save_state(workdir, state)
        write_report_files(state, workdir)
        _emit(_build_status_payload(workdir, state), as_json=json_output)
        return 0

    clear_stop(workdir)
    resume = snapshot.checkpoint.valid
    exit_code = 0
    try:
        handle = scheduler.submit(descriptor, resume=resume)
        state = record_submission(state, handle.job_id)
        logger.info(
            "Chain %s submitted as job %s (%s at %d/%d steps).",
            descriptor.chain_id,
            handle.job_id,
            "resume" if resume else "initial",
            snapshot.steps,
            descriptor.target_steps,
        )
    except SchedulerError as exc:
        logger.error("Initial submission failed: %s", exc)
        state = finalize_state(state, STATUS_FAILED, reason=f"submit_failed: {exc}", steps=snapshot.steps)
        exit_code = 1
    save_state(workdir, state)
    write_report_files(state, workdir)
    _emit(_build_status_payload(workdir, state), as_json=json_output)
    return exit_code


def cmd_attempt(
    workdir: str,
    resume: bool = False,
    verbose: bool = False,
    app_config: AppConfig | None = None,
    scheduler: Scheduler | None = None,
    executor: Executor | None = None,
    job_id: str | None = None,
) -> int:
    """Run one attempt inside the scheduler allocation.

    Returns:
        Exit code (0 = completed, resubmitted or cancelled; 1 = failure).
    """
    if app_config is None:
        app_config = load_app_config()
    try:
        workdir = str(validate_workdir(app_config, workdir))
        descriptor = load_descriptor(workdir)
    except FileNotFoundError:
        logger.error("No job descriptor found in %s", workdir)
        return 1
    except ValueError as exc:
        logger.error("%s", exc)
        return 1

    if scheduler is None:
        scheduler = SlurmScheduler(app_config.slurm)
    if job_id is None:
        job_id = current_slurm_job_id()
    kwargs: dict[str, Any] = {}
    if executor is not None:
        kwargs["executor"] = executor

    with chain_logging_context(workdir, descriptor.chain_id, job_id=job_id, verbose=verbose):
        try:
            state = run_chain_attempt(
                descriptor,
                scheduler,
                resume=resume,
                job_id=job_id,
                **kwargs,
            )
        except RuntimeError as exc:
            logger.error("%s", exc)
            return 1
    return 1 if state.get("status") == STATUS_FAILED else 0


def cmd_status(
    workdir: str,
    json_output: bool = False,
    app_config: AppConfig | None = None,
    scheduler: Scheduler | None = None,
) -> int:
    """Display the chain state together with the live Run State.

    Returns:
        Exit code (0 = found, 1 = not found).
    """
    if app_config is None:
        app_config = load_app_config()
    try:
        workdir = str(validate_workdir(app_config, workdir))
    except ValueError as exc:
        logger.error("%s", exc)
        return 1

    state = load_state(workdir)
    if state is None:
        logger.error("No chain state found in %s", workdir)
        return 1

    payload = _build_status_payload(workdir, state)
    try:
        descriptor = load_descriptor(workdir)
    except (FileNotFoundError, ValueError):
        descriptor = None
    if descriptor is not None:
        snapshot = inspect_run_state(workdir, descriptor.deffnm)
        payload["steps"] = snapshot.steps
        payload["checkpoint"] = snapshot.checkpoint.reason
        payload["progress"] = f"{snapshot.steps}/{descriptor.target_steps}"

    pending = state.get("pending_job_id")
    if pending and not is_terminal(state):
        if scheduler is None:
            scheduler = SlurmScheduler(app_config.slurm)
        try:
            payload["pending_job_state"] = scheduler.status(pending)
        except SchedulerError as exc:
            logger.warning("Could not query job %s: %s", pending, exc)

    if json_output:
        payload["state"] = state
    _emit(payload, as_json=json_output)
    return 0


def cmd_cancel(
    workdir: str,
    include_running: bool = False,
    app_config: AppConfig | None = None,
    scheduler: Scheduler | None = None,
) -> int:
    """Stop the chain: no further resubmissions, pending attempt removed.

    The stop marker is written first so a running attempt that reaches its
    resubmission point sees it even if ``scancel`` fails.
    """
    if app_config is None:
        app_config = load_app_config()
    try:
        workdir = str(validate_workdir(app_config, workdir))
    except ValueError as exc:
        logger.error("%s", exc)
        return 1

    state = load_state(workdir)
    if state is None:
        logger.error("No chain state found in %s", workdir)
        return 1
    if is_terminal(state):
        logger.info("Chain %s is already %s.", state.get("chain_id"), state.get("status"))
        return 0

    request_stop(workdir)
    if scheduler is None:
        scheduler = SlurmScheduler(app_config.slurm)

    exit_code = 0
    targets = [state.get("pending_job_id")]
    if include_running:
        targets.append(state.get("active_job_id"))
    for job_id in [job for job in targets if job]:
        try:
            scheduler.cancel(job_id)
        except SchedulerError as exc:
            logger.error("%s", exc)
            exit_code = 1

    state = finalize_state(state, STATUS_CANCELLED, reason="operator_cancel")
    save_state(workdir, state)
    write_report_files(state, workdir)
    _emit(_build_status_payload(workdir, state), as_json=False)
    return exit_code


def _live_job_id(state: dict[str, Any], scheduler: Scheduler) -> str | None:
    for key in ("active_job_id", "pending_job_id"):
        job_id = state.get(key)
        if not job_id:
            continue
        try:
            if scheduler.status(job_id) in ACTIVE_JOB_STATES:
                return job_id
        except SchedulerError as exc:
            logger.warning("Could not query job %s: %s", job_id, exc)
            return job_id
    return None


def _resolve_descriptor(
    workdir: str,
    *,
    existing: dict[str, Any] | None,
    target_steps: int | None,
    time_limit: str | None,
    force: bool,
    app_config: AppConfig,
) -> JobDescriptor | None:
    previous: JobDescriptor | None = None
    try:
        previous = load_descriptor(workdir)
    except FileNotFoundError:
        previous = None
    except ValueError as exc:
        if not force:
            logger.error("%s (use --force to rewrite it)", exc)
            return None

    if target_steps is None:
        target_steps = previous.target_steps if previous else PipelineParams().md_steps

    reusable = (
        previous is not None
        and not force
        and (
            existing is None
            or (not is_terminal(existing) and existing.get("chain_id") == previous.chain_id)
        )
        and previous.target_steps == target_steps
        and (time_limit is None or time_limit == previous.time_limit)
    )
    if reusable:
        logger.info("Continuing chain %s from its existing descriptor.", previous.chain_id)
        return previous
    try:
        return build_descriptor(
            workdir=workdir,
            target_steps=target_steps,
            app_config=app_config,
            time_limit=time_limit,
        )
    except ValueError as exc:
        logger.error("%s", exc)
        return None


def _emit(payload: dict[str, Any], as_json: bool) -> None:
    """Emit command result payload in text or JSON."""
    if as_json:
        print(json.dumps(payload, ensure_ascii=True, indent=2))
        return

    for key in [
        "status",
        "chain_id",
        "workdir",
        "progress",
        "checkpoint",
        "attempt_count",
        "submissions",
        "pending_job_id",
        "pending_job_state",
        "reason",
        "report_json",
    ]:
        if key in payload and payload[key] not in (None, ""):
            print(f"{key}: {payload[key]}")


def _build_status_payload(workdir: str, state: dict[str, Any]) -> dict[str, Any]:
    final = state.get("final_result")
    if not isinstance(final, dict):
        final = {}
    attempts = state.get("attempts")
    if not isinstance(attempts, list):
        attempts = []

    return {
        "status": state.get("status", ""),
        "chain_id": state.get("chain_id", ""),
        "workdir": workdir,
        "target_steps": state.get("target_steps"),
        "attempt_count": len(attempts),
        "submissions": state.get("submissions", 0),
        "pending_job_id": state.get("pending_job_id"),
        "reason": final.get("reason", ""),
        "chain_state": os.path.join(workdir, "chain_state.json"),
        "report_json": os.path.join(workdir, "chain_report.json"),
    }
