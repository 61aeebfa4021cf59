from __future__ import annotations

from typing import Any

from app_config import load_app_config
from runner.doctor import run_doctor
from runner.orchestrator import cmd_attempt as _cmd_attempt
from runner.orchestrator import cmd_cancel as _cmd_cancel
from runner.orchestrator import cmd_start as _cmd_start
from runner.orchestrator import cmd_status as _cmd_status


def cmd_start(args: Any) -> int:
    cfg = load_app_config(getattr(args, "config", None))
    return int(
        _cmd_start(
            project_dir=args.project_dir,
            target_steps=args.target_steps,
            time_limit=args.time_limit,
            force=args.force,
            json_output=args.json,
            app_config=cfg,
        )
    )


def cmd_attempt(args: Any) -> int:
    cfg = load_app_config(getattr(args, "config", None))
    return int(
        _cmd_attempt(
            workdir=args.workdir,
            resume=args.resume,
            verbose=getattr(args, "verbose", False),
            app_config=cfg,
        )
    )


def cmd_status(args: Any) -> int:
    cfg = load_app_config(getattr(args, "config", None))
    return int(
        _cmd_status(
            workdir=args.workdir,
            json_output=args.json,
            app_config=cfg,
        )
    )


def cmd_cancel(args: Any) -> int:
    cfg = load_app_config(getattr(args, "config", None))
    return int(
        _cmd_cancel(
            workdir=args.workdir,
            include_running=args.include_running,
            app_config=cfg,
        )
    )


def cmd_doctor(args: Any) -> int:
    return int(run_doctor(getattr(args, "config", None)))
