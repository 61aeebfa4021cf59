from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import FakeMdrun, FakeScheduler, append_log, drive_chain, write_checkpoint
from runner.descriptor import load_descriptor
from runner.orchestrator import cmd_attempt, cmd_cancel, cmd_start, cmd_status
from runner.state_machine import load_state, stop_requested


def _md_dir(project_dir: Path) -> Path:
    return project_dir / "05_md"


def test_start_writes_descriptor_and_submits_initial_attempt(project_dir: Path, app_config) -> None:
    scheduler = FakeScheduler()

    exit_code = cmd_start(str(project_dir), target_steps=5000, app_config=app_config, scheduler=scheduler)

    assert exit_code == 0
    descriptor = load_descriptor(str(_md_dir(project_dir)))
    assert descriptor.target_steps == 5000
    assert descriptor.workdir == str(_md_dir(project_dir).resolve())
    state = load_state(descriptor.workdir)
    assert state["status"] == "pending"
    assert state["submissions"] == 1
    assert state["pending_job_id"] == scheduler.submitted[0].job_id
    assert scheduler.submitted[0].resume is False


def test_start_resumes_from_existing_checkpoint(project_dir: Path, app_config) -> None:
    md_dir = _md_dir(project_dir)
    append_log(md_dir / "md.log", ["Writing checkpoint, step 40 at now"])
    write_checkpoint(md_dir / "md.cpt")
    scheduler = FakeScheduler()

    cmd_start(str(project_dir), target_steps=100, app_config=app_config, scheduler=scheduler)

    assert scheduler.submitted[0].resume is True


def test_start_is_noop_when_target_already_reached(project_dir: Path, app_config, capsys) -> None:
    md_dir = _md_dir(project_dir)
    append_log(md_dir / "md.log", ["Writing checkpoint, step 100 at now"])
    scheduler = FakeScheduler()

    exit_code = cmd_start(
        str(project_dir), target_steps=100, json_output=True, app_config=app_config, scheduler=scheduler
    )

    assert exit_code == 0
    assert scheduler.submitted == []
    payload = json.loads(capsys.readouterr().out)
    assert payload["status"] == "completed"
    assert payload["submissions"] == 0


def test_start_refuses_second_active_chain(project_dir: Path, app_config) -> None:
    scheduler = FakeScheduler()
    cmd_start(str(project_dir), target_steps=100, app_config=app_config, scheduler=scheduler)

    exit_code = cmd_start(str(project_dir), target_steps=100, app_config=app_config, scheduler=scheduler)

    assert exit_code == 1
    assert len(scheduler.submitted) == 1


def test_start_rejects_project_outside_allowed_root(tmp_path: Path, app_config) -> None:
    outside = tmp_path.parent / "elsewhere"

    assert cmd_start(str(outside), target_steps=10, app_config=app_config, scheduler=FakeScheduler()) == 1


def test_start_requires_production_tpr(project_dir: Path, app_config) -> None:
    (_md_dir(project_dir) / "md.tpr").unlink()
    scheduler = FakeScheduler()

    assert cmd_start(str(project_dir), target_steps=10, app_config=app_config, scheduler=scheduler) == 1
    assert scheduler.submitted == []


def test_start_reports_initial_submission_failure(project_dir: Path, app_config) -> None:
    exit_code = cmd_start(
        str(project_dir), target_steps=10, app_config=app_config, scheduler=FakeScheduler(fail_submit=True)
    )

    assert exit_code == 1
    state = load_state(str(_md_dir(project_dir)))
    assert state["status"] == "failed"
    assert state["final_result"]["reason"].startswith("submit_failed")


def test_cancel_removes_pending_attempt_and_stops_chain(project_dir: Path, app_config) -> None:
    scheduler = FakeScheduler()
    cmd_start(str(project_dir), target_steps=100, app_config=app_config, scheduler=scheduler)
    md_dir = str(_md_dir(project_dir))
    pending = load_state(md_dir)["pending_job_id"]

    assert cmd_cancel(md_dir, app_config=app_config, scheduler=scheduler) == 0

    assert scheduler.cancelled == [pending]
    assert scheduler.queue == []
    assert stop_requested(md_dir)
    state = load_state(md_dir)
    assert state["status"] == "cancelled"
    assert state["pending_job_id"] is None


def test_cancel_between_attempts_halts_progress(project_dir: Path, app_config) -> None:
    scheduler = FakeScheduler()
    executor = FakeMdrun(10)
    cmd_start(str(project_dir), target_steps=100, app_config=app_config, scheduler=scheduler)
    md_dir = str(_md_dir(project_dir))
    descriptor = load_descriptor(md_dir)

    drive_chain(descriptor, scheduler, executor, max_attempts=2)
    cmd_cancel(md_dir, app_config=app_config, scheduler=scheduler)
    drive_chain(descriptor, scheduler, executor)

    state = load_state(md_dir)
    assert state["status"] == "cancelled"
    assert len(executor.requests) == 2
    assert len(state["attempts"]) == 2


def test_cancel_running_attempt_when_requested(project_dir: Path, app_config) -> None:
    scheduler = FakeScheduler()
    cmd_start(str(project_dir), target_steps=100, app_config=app_config, scheduler=scheduler)
    md_dir = str(_md_dir(project_dir))
    state_path = Path(md_dir) / "chain_state.json"
    state = json.loads(state_path.read_text(encoding="utf-8"))
    state["active_job_id"] = "555"
    state_path.write_text(json.dumps(state), encoding="utf-8")

    cmd_cancel(md_dir, include_running=True, app_config=app_config, scheduler=scheduler)

    assert "555" in scheduler.cancelled


def test_attempt_command_runs_one_link_with_chain_logs(project_dir: Path, app_config) -> None:
    scheduler = FakeScheduler()
    cmd_start(str(project_dir), target_steps=20, app_config=app_config, scheduler=scheduler)
    md_dir = str(_md_dir(project_dir))
    handle = scheduler.queue.pop(0)

    exit_code = cmd_attempt(
        md_dir,
        resume=handle.resume,
        app_config=app_config,
        scheduler=scheduler,
        executor=FakeMdrun(10),
        job_id=handle.job_id,
    )

    assert exit_code == 0
    assert load_state(md_dir)["status"] == "pending"
    events = (Path(md_dir) / "chain_events.jsonl").read_text(encoding="utf-8").splitlines()
    assert events
    assert all(json.loads(line)["chain_id"] == load_descriptor(md_dir).chain_id for line in events)
    assert "resubmitted as job" in (Path(md_dir) / "chain.log").read_text(encoding="utf-8")


def test_attempt_command_returns_failure_exit_code(project_dir: Path, app_config) -> None:
    cmd_start(str(project_dir), target_steps=20, app_config=app_config, scheduler=FakeScheduler())

    exit_code = cmd_attempt(
        str(_md_dir(project_dir)),
        app_config=app_config,
        scheduler=FakeScheduler(),
        executor=FakeMdrun(10, exit_code=1),
        job_id="1",
    )

    assert exit_code == 1


def test_attempt_command_requires_descriptor(tmp_path: Path, app_config) -> None:
    workdir = tmp_path / "empty"
    workdir.mkdir()

    assert cmd_attempt(str(workdir), app_config=app_config, scheduler=FakeScheduler()) == 1


@pytest.mark.parametrize("as_json", [False, True])
def test_status_reports_progress(project_dir: Path, app_config, capsys, as_json: bool) -> None:
    scheduler = FakeScheduler()
    cmd_start(str(project_dir), target_steps=100, app_config=app_config, scheduler=scheduler)
    md_dir = str(_md_dir(project_dir))
    capsys.readouterr()

    assert cmd_status(md_dir, json_output=as_json, app_config=app_config, scheduler=scheduler) == 0

    out = capsys.readouterr().out
    if as_json:
        payload = json.loads(out)
        assert payload["progress"] == "0/100"
        assert payload["pending_job_state"] == "pending"
        assert payload["state"]["submissions"] == 1
    else:
        assert "status: pending" in out
        assert "progress: 0/100" in out


def test_status_without_state_fails(project_dir: Path, app_config) -> None:
    assert cmd_status(str(_md_dir(project_dir)), app_config=app_config) == 1
