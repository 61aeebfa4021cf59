"""System preparation: PDB to a solvated, ionized system ready for EM."""

from __future__ import annotations

import glob
import logging
import os
import shutil

from md_engine.gmx_runner import GmxRunner, require_inputs
from md_engine.mdp import ensure_mdp
from stage_config import PipelineParams
from .layout import ProjectLayout
from .types import StageResult

logger = logging.getLogger(__name__)

PROCESSED_GRO = "1_processed.gro"
BOXED_GRO = "2_boxed.gro"
SOLVATED_GRO = "3_solvated.gro"
IONS_TPR = "4_ions.tpr"
IONIZED_GRO = "4_solvated_ions.gro"
TOPOLOGY = "topol.top"


def run_prep_stage(
    layout: ProjectLayout,
    params: PipelineParams,
    gmx: GmxRunner,
    *,
    input_path: str | None = None,
) -> StageResult:
    """Build topology, box, solvent and ions, then grompp ``02_em/em.tpr``.

    The generated ``topol.top`` and ``*.itp`` files are copied to the project
    root, where the later stages pick them up.
    """
    if not input_path:
        raise ValueError("Stage 'prep' requires --input <structure.pdb>.")
    input_path = os.path.abspath(input_path)
    require_inputs([input_path], stage="prep")
    gmx.ensure_available()
    layout.ensure_dirs()
    values = params.to_dict()
    ions_mdp = ensure_mdp(layout.mdp_dir, "ions", values)
    em_mdp = ensure_mdp(layout.mdp_dir, "em", values)

    logger.info(
        "Preparing %s (ff=%s water=%s box=%s d=%.2f nm conc=%.3f M)",
        os.path.basename(input_path),
        params.force_field,
        params.water_model,
        params.box_type,
        params.box_distance,
        params.salt_concentration,
    )
    cwd = layout.prep_dir
    gmx.run(
        "pdb2gmx",
        [
            "-f", input_path,
            "-o", PROCESSED_GRO,
            "-water", params.water_model,
            "-ff", params.force_field,
            "-ignh",
        ],
        cwd=cwd,
    )
    gmx.run(
        "editconf",
        [
            "-f", PROCESSED_GRO,
            "-o", BOXED_GRO,
            "-c",
            "-d", params.box_distance,
            "-bt", params.box_type,
        ],
        cwd=cwd,
    )
    gmx.run(
        "solvate",
        ["-cp", BOXED_GRO, "-cs", "spc216.gro", "-o", SOLVATED_GRO, "-p", TOPOLOGY],
        cwd=cwd,
    )
    gmx.run(
        "grompp",
        ["-f", ions_mdp, "-c", SOLVATED_GRO, "-p", TOPOLOGY, "-o", IONS_TPR],
        cwd=cwd,
    )
    gmx.run(
        "genion",
        [
            "-s", IONS_TPR,
            "-o", IONIZED_GRO,
            "-p", TOPOLOGY,
            "-pname", params.positive_ion,
            "-nname", params.negative_ion,
            "-neutral",
            "-conc", params.salt_concentration,
        ],
        cwd=cwd,
        stdin_text="SOL\n",
    )
    em_tpr = os.path.join(layout.em_dir, "em.tpr")
    gmx.run(
        "grompp",
        ["-f", em_mdp, "-c", IONIZED_GRO, "-p", TOPOLOGY, "-o", em_tpr],
        cwd=cwd,
    )

    copied = _publish_topology(cwd, layout.root)
    return StageResult(
        stage="prep",
        workdir=cwd,
        outputs=[os.path.join(cwd, IONIZED_GRO), *copied],
        next_tpr=em_tpr,
    )


def _publish_topology(prep_dir: str, project_root: str) -> list[str]:
    copied = []
    sources = [os.path.join(prep_dir, TOPOLOGY)]
    sources.extend(sorted(glob.glob(os.path.join(prep_dir, "*.itp"))))
    for source in sources:
        if not os.path.isfile(source):
            continue
        target = os.path.join(project_root, os.path.basename(source))
        shutil.copy2(source, target)
        copied.append(target)
    logger.info("Copied %d topology file(s) to %s", len(copied), project_root)
    return copied
