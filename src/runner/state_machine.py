"""Chain state machine and persistence for mdchain.

Manages ``chain_state.json`` in each production working directory with
attempt history, termination decisions and report generation.

Chain status transitions::

    created -> pending -> running -> completed
                  ^          |-----> failed
                  |          `-----> incomplete --(resubmitted)--'
    any non-terminal status --(operator cancel)--> cancelled
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from md_engine.mdrun import WALLCLOCK_EXIT_CODES
from .types import AttemptRecord, ChainState

_STATE_FILE = "chain_state.json"
_REPORT_JSON = "chain_report.json"
_REPORT_MD = "chain_report.md"
_STOP_FILE = "chain.stop"

SIGNAL_COMPLETED = "completed"
SIGNAL_INCOMPLETE = "incomplete"
SIGNAL_FAILED = "failed"

STATUS_CREATED = "created"
STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_INCOMPLETE = "incomplete"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

TERMINAL_STATUSES = {STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED}


@dataclass(frozen=True)
class TerminationDecision:
    """Termination Signal inferred from one attempt's Run State and exit status."""

    signal: str
    reason: str


def is_target_reached(steps: int, target_steps: int) -> bool:
    return int(steps) >= int(target_steps)


def classify_attempt(
    *,
    steps: int,
    target_steps: int,
    exit_code: int | None,
    checkpoint_valid: bool,
    checkpoint_reason: str = "",
    wallclock_stop: bool = False,
    finished: bool = False,
    steps_before: int | None = None,
) -> TerminationDecision:
    """Derive the Termination Signal of an attempt.

    Pure function of its inputs, so repeated calls on an unchanged Run State
    always agree.

    An attempt that leaves the step count at or below ``steps_before`` is
    failed, as is one whose log reports a clean finish below the target.
    """
    if is_target_reached(steps, target_steps):
        return TerminationDecision(SIGNAL_COMPLETED, "target_reached")

    wallclock = wallclock_stop or (exit_code in WALLCLOCK_EXIT_CODES)
    if exit_code not in (None, 0) and not wallclock:
        return TerminationDecision(SIGNAL_FAILED, f"tool_error(exit_code={exit_code})")
    if not checkpoint_valid:
        reason = checkpoint_reason or "invalid"
        return TerminationDecision(SIGNAL_FAILED, f"checkpoint_{reason}")
    if finished and not wallclock:
        return TerminationDecision(SIGNAL_FAILED, "finished_below_target")
    if steps_before is not None and int(steps) <= int(steps_before):
        return TerminationDecision(SIGNAL_FAILED, "no_progress")
    if wallclock:
        return TerminationDecision(SIGNAL_INCOMPLETE, "wallclock_exhausted")
    return TerminationDecision(SIGNAL_INCOMPLETE, "stopped_before_target")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_state(chain_id: str, workdir: str, target_steps: int) -> ChainState:
    """Create a fresh chain state."""
    return {
        "chain_id": chain_id,
        "workdir": workdir,
        "target_steps": int(target_steps),
        "status": STATUS_CREATED,
        "pending_job_id": None,
        "active_job_id": None,
        "submissions": 0,
        "started_at": _now(),
        "updated_at": _now(),
        "attempts": [],
        "final_result": None,
    }


def load_state(workdir: str) -> ChainState | None:
    """Load chain state from ``chain_state.json`` in the working directory.

    Returns ``None`` if no state file exists or it cannot be parsed.
    """
    state_path = os.path.join(workdir, _STATE_FILE)
    if not os.path.exists(state_path):
        return None
    try:
        with open(state_path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, json.JSONDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def save_state(workdir: str, state: ChainState) -> None:
    """Persist chain state atomically (tmp + rename + fsync)."""
    state["updated_at"] = _now()
    state_path = os.path.join(workdir, _STATE_FILE)
    tmp_path = state_path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(state, f, indent=2, ensure_ascii=False)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, state_path)


def load_or_create_state(chain_id: str, workdir: str, target_steps: int) -> ChainState:
    """Load the state for ``chain_id`` or start a fresh one."""
    state = load_state(workdir)
    if not state or state.get("chain_id") != chain_id:
        state = new_state(chain_id, workdir, target_steps)
    if not isinstance(state.get("attempts"), list):
        state["attempts"] = []
    state["target_steps"] = int(target_steps)
    return state


def update_status(state: ChainState, status: str) -> ChainState:
    state["status"] = status
    state["updated_at"] = _now()
    return state


def record_attempt(state: ChainState, attempt: AttemptRecord) -> ChainState:
    """Append an attempt record to the state."""
    attempts = state.get("attempts")
    if not isinstance(attempts, list):
        attempts = []
        state["attempts"] = attempts
    attempts.append(attempt)
    state["updated_at"] = _now()
    return state


def record_submission(state: ChainState, job_id: str) -> ChainState:
    state["pending_job_id"] = job_id
    state["submissions"] = int(state.get("submissions") or 0) + 1
    state["status"] = STATUS_PENDING
    state["updated_at"] = _now()
    return state


def finalize_state(
    state: ChainState,
    status: str,
    *,
    reason: str | None = None,
    steps: int | None = None,
    extra: dict[str, Any] | None = None,
) -> ChainState:
    """Mark the chain as terminal (completed, failed or cancelled)."""
    state["status"] = status
    state["pending_job_id"] = None
    state["active_job_id"] = None
    attempts = state.get("attempts") if isinstance(state.get("attempts"), list) else []
    final_result: dict[str, Any] = {
        "status": status,
        "reason": reason or "",
        "completed_at": _now(),
        "steps": steps,
        "target_steps": state.get("target_steps"),
        "attempt_count": len(attempts),
    }
    if isinstance(extra, dict):
        protected = set(final_result)
        final_result.update({k: v for k, v in extra.items() if k not in protected})
    state["final_result"] = final_result
    state["updated_at"] = _now()
    return state


def is_terminal(state: ChainState) -> bool:
    return state.get("status") in TERMINAL_STATUSES


def request_stop(workdir: str, reason: str = "operator_cancel") -> str:
    path = os.path.join(workdir, _STOP_FILE)
    with open(path, "w", encoding="utf-8") as f:
        f.write(json.dumps({"reason": reason, "requested_at": _now()}) + "\n")
    return path


def stop_requested(workdir: str) -> bool:
    return os.path.exists(os.path.join(workdir, _STOP_FILE))


def clear_stop(workdir: str) -> None:
    try:
        os.remove(os.path.join(workdir, _STOP_FILE))
    except FileNotFoundError:
        pass


def write_report_files(state: ChainState, workdir: str) -> None:
    """Generate ``chain_report.json`` and ``chain_report.md``."""
    _write_report_json(state, workdir)
    _write_report_md(state, workdir)


def _write_report_json(state: ChainState, workdir: str) -> None:
    attempts = state.get("attempts")
    if not isinstance(attempts, list):
        attempts = []
    report = {
        "chain_id": state.get("chain_id"),
        "workdir": state.get("workdir"),
        "status": state.get("status"),
        "target_steps": state.get("target_steps"),
        "attempt_count": len(attempts),
        "submissions": state.get("submissions", 0),
        "started_at": state.get("started_at"),
        "updated_at": state.get("updated_at"),
        "attempts": attempts,
        "final_result": state.get("final_result"),
    }
    with open(os.path.join(workdir, _REPORT_JSON), "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2, ensure_ascii=False)


def _write_report_md(state: ChainState, workdir: str) -> None:
    attempts = state.get("attempts")
    if not isinstance(attempts, list):
        attempts = []

    lines = [
        "# mdrun Chain Report",
        "",
        f"- chain_id: `{state.get('chain_id')}`",
        f"- status: `{state.get('status')}`",
        f"- target_steps: `{state.get('target_steps')}`",
        f"- attempt_count: `{len(attempts)}`",
        f"- submissions: `{state.get('submissions', 0)}`",
        f"- started_at: `{state.get('started_at')}`",
        "",
        "## Attempts",
        "",
        "| # | job | signal | reason | steps | exit |",
        "|--:|-----|--------|--------|-------|-----:|",
    ]
    for attempt in attempts:
        steps = f"{attempt.get('steps_before', '?')} -> {attempt.get('steps_after', '?')}"
        exit_code = attempt.get("exit_code")
        lines.append(
            f"| {attempt.get('index', '?')} | {attempt.get('job_id') or '-'} "
            f"| `{attempt.get('signal', '?')}` | {attempt.get('reason', '')} "
            f"| {steps} | {'-' if exit_code is None else exit_code} |"
        )

    final = state.get("final_result")
    if final:
        lines.extend([
            "",
            "## Final Result",
            "",
            f"- status: `{final.get('status', '?')}`",
            f"- reason: {final.get('reason', '-')}",
        ])
        if final.get("steps") is not None:
            lines.append(f"- steps: {final['steps']} / {final.get('target_steps')}")

    lines.append("")
    with open(os.path.join(workdir, _REPORT_MD), "w", encoding="utf-8") as f:
        f.write("\n".join(lines))
