"""CLI for mdchain: setup stages and self-resubmitting production chains.

Commands:
- stage: run one setup stage (prep, em, nvt, npt, analysis)
- start / attempt / status / cancel: drive the production chain
- doctor: check the runtime environment
"""

from __future__ import annotations

import argparse
import logging
import sys


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mdchain")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to mdchain config.yaml (default: $MDCHAIN_CONFIG or ~/.mdchain/config.yaml)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- stage ---
    stage_parser = subparsers.add_parser(
        "stage",
        help="Run one setup stage of a project.",
    )
    stage_parser.add_argument(
        "stage",
        choices=["prep", "em", "nvt", "npt", "analysis"],
        help="Stage to run.",
    )
    stage_parser.add_argument(
        "--project-dir",
        required=True,
        help="Project directory under the configured allowed_root",
    )
    stage_parser.add_argument(
        "--input",
        default=None,
        help="Input structure (PDB) for the prep stage",
    )
    stage_parser.add_argument(
        "--params",
        default=None,
        help="Parameter file (JSON/YAML/TOML)",
    )
    stage_parser.add_argument("--force-field", dest="force_field", default=None)
    stage_parser.add_argument("--water-model", dest="water_model", default=None)
    stage_parser.add_argument("--box-type", dest="box_type", default=None)
    stage_parser.add_argument("--box-distance", dest="box_distance", type=float, default=None)
    stage_parser.add_argument(
        "--salt-concentration", dest="salt_concentration", type=float, default=None
    )
    stage_parser.add_argument("--temperature", type=float, default=None)
    stage_parser.add_argument("--dt", type=float, default=None)
    stage_parser.add_argument("--em-steps", dest="em_steps", type=int, default=None)
    stage_parser.add_argument("--nvt-steps", dest="nvt_steps", type=int, default=None)
    stage_parser.add_argument("--npt-steps", dest="npt_steps", type=int, default=None)
    stage_parser.add_argument("--md-steps", dest="md_steps", type=int, default=None)

    # --- start ---
    start_parser = subparsers.add_parser(
        "start",
        help="Submit the first attempt of a production chain.",
    )
    start_parser.add_argument(
        "--project-dir",
        required=True,
        help="Project directory under the configured allowed_root",
    )
    start_parser.add_argument(
        "--target-steps",
        type=int,
        default=None,
        help="Total step count the production run must reach.",
    )
    start_parser.add_argument(
        "--time-limit",
        default=None,
        help="Per-attempt wall-clock limit, [D-]HH:MM:SS (default: from config).",
    )
    start_parser.add_argument(
        "--force",
        action="store_true",
        help="Start a new chain even if a descriptor for this run exists",
    )
    start_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON.",
    )

    # --- attempt ---
    attempt_parser = subparsers.add_parser(
        "attempt",
        help="Run one attempt (invoked from the batch script).",
    )
    attempt_parser.add_argument(
        "--workdir",
        required=True,
        help="Production working directory containing job.json",
    )
    attempt_parser.add_argument(
        "--resume",
        action="store_true",
        help="Continue from the existing checkpoint.",
    )

    # --- status ---
    status_parser = subparsers.add_parser(
        "status",
        help="Check the status of a chain.",
    )
    status_parser.add_argument(
        "--workdir",
        required=True,
        help="Production working directory",
    )
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON.",
    )

    # --- cancel ---
    cancel_parser = subparsers.add_parser(
        "cancel",
        help="Stop a chain and remove its pending attempt.",
    )
    cancel_parser.add_argument(
        "--workdir",
        required=True,
        help="Production working directory",
    )
    cancel_parser.add_argument(
        "--include-running",
        action="store_true",
        help="Also cancel the attempt that is currently running.",
    )

    # --- doctor ---
    subparsers.add_parser(
        "doctor",
        help="Check gmx, SLURM tools and Python dependencies.",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        command_map = {
            "stage": _cmd_stage,
            "start": _cmd_start,
            "attempt": _cmd_attempt,
            "status": _cmd_status,
            "cancel": _cmd_cancel,
            "doctor": _cmd_doctor,
        }
        handler = command_map.get(args.command)
        if handler is None:
            parser.print_help()
            return 1
        return int(handler(args))
    except KeyboardInterrupt:
        return 130
    except Exception as exc:
        logging.error("%s", exc)
        return 1


def _cmd_stage(args: argparse.Namespace) -> int:
    from commands.stage import cmd_stage

    return cmd_stage(args)


def _cmd_start(args: argparse.Namespace) -> int:
    from commands.chain import cmd_start

    return cmd_start(args)


def _cmd_attempt(args: argparse.Namespace) -> int:
    from commands.chain import cmd_attempt

    return cmd_attempt(args)


def _cmd_status(args: argparse.Namespace) -> int:
    from commands.chain import cmd_status

    return cmd_status(args)


def _cmd_cancel(args: argparse.Namespace) -> int:
    from commands.chain import cmd_cancel

    return cmd_cancel(args)


def _cmd_doctor(args: argparse.Namespace) -> int:
    from commands.chain import cmd_doctor

    return cmd_doctor(args)


if __name__ == "__main__":
    raise SystemExit(main())
