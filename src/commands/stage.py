from __future__ import annotations

import logging
import os
from typing import Any

from app_config import AppConfig, load_app_config
from md_engine.errors import ExternalToolError, MissingInputError
from md_engine.gmx_runner import GmxRunner
from pipeline.layout import ProjectLayout
from pipeline.plugins import FeatureUnavailableError, run_stage
from stage_config import DEFAULT_PARAMS_PATH, build_params, write_params_used
from ._helpers import validate_project_dir

logger = logging.getLogger(__name__)

OVERRIDE_FIELDS = (
    "force_field",
    "water_model",
    "box_type",
    "box_distance",
    "salt_concentration",
    "temperature",
    "dt",
    "em_steps",
    "nvt_steps",
    "npt_steps",
    "md_steps",
)


def cmd_stage(args: Any) -> int:
    cfg = load_app_config(getattr(args, "config", None))
    return int(
        run_pipeline_stage(
            stage=args.stage,
            project_dir=args.project_dir,
            input_path=getattr(args, "input", None),
            params_path=getattr(args, "params", None),
            overrides={name: getattr(args, name, None) for name in OVERRIDE_FIELDS},
            app_config=cfg,
        )
    )


def run_pipeline_stage(
    stage: str,
    project_dir: str,
    input_path: str | None = None,
    params_path: str | None = None,
    overrides: dict[str, Any] | None = None,
    app_config: AppConfig | None = None,
    gmx: GmxRunner | None = None,
) -> int:
    """Run one setup stage in a project directory.

    Returns:
        Exit code (0 = stage finished, 1 = failure).
    """
    if app_config is None:
        app_config = load_app_config()
    try:
        project = validate_project_dir(app_config, project_dir, create=(stage == "prep"))
    except ValueError as exc:
        logger.error("%s", exc)
        return 1
    layout = ProjectLayout(str(project))
    if params_path is None and os.path.isfile(os.path.join(layout.root, DEFAULT_PARAMS_PATH)):
        params_path = os.path.join(layout.root, DEFAULT_PARAMS_PATH)

    try:
        params = build_params(params_path, overrides)
    except (FileNotFoundError, ValueError) as exc:
        logger.error("%s", exc)
        return 1

    if gmx is None:
        gmx = GmxRunner(app_config.gmx.binary)
    stage_kwargs: dict[str, Any] = {}
    if stage == "prep":
        stage_kwargs["input_path"] = input_path
    elif stage != "analysis":
        stage_kwargs["mdrun_args"] = _equilibration_mdrun_args(app_config)

    try:
        if stage == "analysis":
            result = run_stage(stage, layout, gmx)
        else:
            result = run_stage(stage, layout, params, gmx, **stage_kwargs)
    except (FeatureUnavailableError, MissingInputError, ExternalToolError, ValueError) as exc:
        logger.error("Stage '%s' failed: %s", stage, exc)
        return 1

    write_params_used(params, result.workdir)
    for output in result.outputs:
        print(f"output: {output}")
    if result.next_tpr:
        print(f"next_tpr: {result.next_tpr}")
    return 0


def _equilibration_mdrun_args(app_config: AppConfig) -> list[str]:
    args: list[str] = []
    if app_config.gmx.ntomp:
        args.extend(["-ntomp", str(app_config.gmx.ntomp)])
    args.extend(app_config.gmx.mdrun_extra_args)
    return args
