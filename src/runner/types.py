"""Type definitions for the chain controller."""

from __future__ import annotations

from typing import TypedDict


class AttemptRecord(TypedDict, total=False):
    """Record of a single scheduled mdrun attempt."""

    index: int
    job_id: str | None
    resumed: bool
    started_at: str
    ended_at: str
    exit_code: int | None
    signal: str
    reason: str
    steps_before: int
    steps_after: int
    target_steps: int
    checkpoint_sha256: str | None
    resubmitted_job_id: str | None
    error: str | None


class ChainFinalResult(TypedDict, total=False):
    """Terminal result of a chain."""

    status: str
    reason: str
    completed_at: str
    steps: int
    target_steps: int
    attempt_count: int


class ChainState(TypedDict, total=False):
    """Full chain state persisted to chain_state.json."""

    chain_id: str
    workdir: str
    target_steps: int
    status: str
    pending_job_id: str | None
    active_job_id: str | None
    submissions: int
    started_at: str
    updated_at: str
    attempts: list[AttemptRecord]
    final_result: ChainFinalResult | None
