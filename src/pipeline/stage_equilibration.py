"""Energy minimization and NVT/NPT equilibration stages.

Each stage runs ``mdrun`` on the tpr prepared by the previous stage and then
grompps the input of the next one, so the chain of directories stays
``02_em -> 03_nvt -> 04_npt -> 05_md``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Sequence

from md_engine.gmx_runner import GmxRunner, require_inputs
from md_engine.mdp import ensure_mdp
from stage_config import PipelineParams
from .layout import ProjectLayout
from .types import StageResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _EquilibrationStep:
    name: str
    workdir_attr: str
    next_name: str
    next_workdir_attr: str
    restrain_next: bool
    carry_checkpoint: bool


_STEPS = {
    "em": _EquilibrationStep("em", "em_dir", "nvt", "nvt_dir", True, False),
    "nvt": _EquilibrationStep("nvt", "nvt_dir", "npt", "npt_dir", True, True),
    "npt": _EquilibrationStep("npt", "npt_dir", "md", "md_dir", False, True),
}


def _run_step(
    step: _EquilibrationStep,
    layout: ProjectLayout,
    params: PipelineParams,
    gmx: GmxRunner,
    mdrun_args: Sequence[str],
) -> StageResult:
    workdir = getattr(layout, step.workdir_attr)
    next_dir = getattr(layout, step.next_workdir_attr)
    tpr = os.path.join(workdir, f"{step.name}.tpr")
    require_inputs([tpr, layout.topology], stage=step.name)
    gmx.ensure_available()
    os.makedirs(next_dir, exist_ok=True)
    next_mdp = ensure_mdp(layout.mdp_dir, step.next_name, params.to_dict())

    gmx.run("mdrun", ["-deffnm", step.name, *mdrun_args], cwd=workdir)
    structure = os.path.join(workdir, f"{step.name}.gro")
    require_inputs([structure], stage=step.name)

    next_tpr = os.path.join(next_dir, f"{step.next_name}.tpr")
    grompp_args = ["-f", next_mdp, "-c", structure, "-p", layout.topology, "-o", next_tpr]
    if step.restrain_next:
        grompp_args.extend(["-r", structure])
    if step.carry_checkpoint:
        checkpoint = os.path.join(workdir, f"{step.name}.cpt")
        require_inputs([checkpoint], stage=step.name)
        grompp_args.extend(["-t", checkpoint])
    gmx.run("grompp", grompp_args, cwd=next_dir)
    logger.info("Stage %s finished; next input: %s", step.name, next_tpr)

    return StageResult(
        stage=step.name,
        workdir=workdir,
        outputs=[structure, os.path.join(workdir, f"{step.name}.log")],
        next_tpr=next_tpr,
    )


def run_em_stage(
    layout: ProjectLayout,
    params: PipelineParams,
    gmx: GmxRunner,
    *,
    mdrun_args: Sequence[str] = (),
) -> StageResult:
    return _run_step(_STEPS["em"], layout, params, gmx, mdrun_args)


def run_nvt_stage(
    layout: ProjectLayout,
    params: PipelineParams,
    gmx: GmxRunner,
    *,
    mdrun_args: Sequence[str] = (),
) -> StageResult:
    return _run_step(_STEPS["nvt"], layout, params, gmx, mdrun_args)


def run_npt_stage(
    layout: ProjectLayout,
    params: PipelineParams,
    gmx: GmxRunner,
    *,
    mdrun_args: Sequence[str] = (),
) -> StageResult:
    return _run_step(_STEPS["npt"], layout, params, gmx, mdrun_args)
