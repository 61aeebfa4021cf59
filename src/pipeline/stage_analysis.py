"""Post-production analysis of a completed chain."""

from __future__ import annotations

import logging
import os

from md_engine.gmx_runner import GmxRunner, require_inputs
from md_engine.run_state import inspect_run_state
from runner.descriptor import load_descriptor
from .layout import ProjectLayout
from .types import StageResult

logger = logging.getLogger(__name__)

CENTERED_XTC = "md_center.xtc"


def run_analysis_stage(
    layout: ProjectLayout,
    gmx: GmxRunner,
    *,
    deffnm: str = "md",
    target_steps: int | None = None,
) -> StageResult:
    """Center the production trajectory and compute RMSD, Rg and energies.

    Refuses to run while the production Run State is below its target.
    """
    md_dir = layout.md_dir
    if target_steps is None:
        try:
            descriptor = load_descriptor(md_dir)
        except FileNotFoundError:
            raise ValueError(
                f"No job descriptor in {md_dir}; pass --target-steps or run 'start' first."
            ) from None
        deffnm = descriptor.deffnm
        target_steps = descriptor.target_steps

    snapshot = inspect_run_state(md_dir, deffnm)
    if snapshot.steps < target_steps:
        raise ValueError(
            f"Production run is not complete ({snapshot.steps}/{target_steps} steps)."
        )

    tpr = os.path.join(md_dir, f"{deffnm}.tpr")
    xtc = os.path.join(md_dir, f"{deffnm}.xtc")
    edr = os.path.join(md_dir, f"{deffnm}.edr")
    require_inputs([tpr, xtc, edr], stage="analysis")
    gmx.ensure_available()
    out_dir = layout.analysis_dir
    os.makedirs(out_dir, exist_ok=True)

    centered = os.path.join(out_dir, CENTERED_XTC)
    # Selections: centering group, then output group.
    gmx.run(
        "trjconv",
        ["-s", tpr, "-f", xtc, "-o", centered, "-pbc", "mol", "-center"],
        cwd=out_dir,
        stdin_text="Protein\nSystem\n",
    )
    rmsd = os.path.join(out_dir, "rmsd.xvg")
    gmx.run(
        "rms",
        ["-s", tpr, "-f", centered, "-o", rmsd, "-tu", "ns"],
        cwd=out_dir,
        stdin_text="Backbone\nBackbone\n",
    )
    gyrate = os.path.join(out_dir, "gyrate.xvg")
    gmx.run(
        "gyrate",
        ["-s", tpr, "-f", centered, "-o", gyrate],
        cwd=out_dir,
        stdin_text="Protein\n",
    )
    energy = os.path.join(out_dir, "energy.xvg")
    gmx.run(
        "energy",
        ["-f", edr, "-o", energy],
        cwd=out_dir,
        stdin_text="Potential\nTemperature\nPressure\nDensity\n0\n",
    )
    logger.info("Analysis written to %s", out_dir)
    return StageResult(
        stage="analysis",
        workdir=out_dir,
        outputs=[centered, rmsd, gyrate, energy],
    )
