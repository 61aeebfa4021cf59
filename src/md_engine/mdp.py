"""Built-in ``.mdp`` parameter templates for each pipeline stage."""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping

logger = logging.getLogger(__name__)

_COMMON_NONBONDED = {
    "cutoff-scheme": "Verlet",
    "nstlist": 10,
    "coulombtype": "PME",
    "rcoulomb": 1.2,
    "vdwtype": "Cut-off",
    "vdw-modifier": "Force-switch",
    "rvdw-switch": 1.0,
    "rvdw": 1.2,
    "pbc": "xyz",
}

_DYNAMICS = {
    "integrator": "md",
    "constraints": "h-bonds",
    "constraint_algorithm": "lincs",
    "tcoupl": "V-rescale",
    "tc-grps": "Protein Non-Protein",
    "tau_t": "0.1 0.1",
    "DispCorr": "no",
}

MDP_TEMPLATES: dict[str, dict[str, Any]] = {
    "ions": {
        "integrator": "steep",
        "emtol": 1000.0,
        "emstep": 0.01,
        "nsteps": 50000,
        **_COMMON_NONBONDED,
    },
    "em": {
        "integrator": "steep",
        "emtol": 1000.0,
        "emstep": 0.01,
        "nsteps": "{em_steps}",
        **_COMMON_NONBONDED,
    },
    "nvt": {
        "define": "-DPOSRES",
        **_DYNAMICS,
        "nsteps": "{nvt_steps}",
        "dt": "{dt}",
        "nstxout-compressed": 5000,
        "nstenergy": 5000,
        "nstlog": 5000,
        "continuation": "no",
        "ref_t": "{temperature} {temperature}",
        "pcoupl": "no",
        "gen_vel": "yes",
        "gen_temp": "{temperature}",
        "gen_seed": -1,
        **_COMMON_NONBONDED,
    },
    "npt": {
        "define": "-DPOSRES",
        **_DYNAMICS,
        "nsteps": "{npt_steps}",
        "dt": "{dt}",
        "nstxout-compressed": 5000,
        "nstenergy": 5000,
        "nstlog": 5000,
        "continuation": "yes",
        "ref_t": "{temperature} {temperature}",
        "pcoupl": "C-rescale",
        "pcoupltype": "isotropic",
        "tau_p": 2.0,
        "ref_p": 1.0,
        "compressibility": 4.5e-5,
        "refcoord_scaling": "com",
        "gen_vel": "no",
        **_COMMON_NONBONDED,
    },
    "md": {
        **_DYNAMICS,
        "nsteps": "{md_steps}",
        "dt": "{dt}",
        "nstxout-compressed": 50000,
        "nstenergy": 50000,
        "nstlog": 50000,
        "continuation": "yes",
        "ref_t": "{temperature} {temperature}",
        "pcoupl": "Parrinello-Rahman",
        "pcoupltype": "isotropic",
        "tau_p": 2.0,
        "ref_p": 1.0,
        "compressibility": 4.5e-5,
        "gen_vel": "no",
        **_COMMON_NONBONDED,
    },
}


def render_mdp(name: str, params: Mapping[str, Any]) -> str:
    if name not in MDP_TEMPLATES:
        available = ", ".join(sorted(MDP_TEMPLATES))
        raise KeyError(f"No mdp template '{name}' (available: {available}).")
    lines = [f"; {name}.mdp generated by mdchain"]
    for key, value in MDP_TEMPLATES[name].items():
        text = value.format(**params) if isinstance(value, str) else str(value)
        lines.append(f"{key:<24}= {text}")
    return "\n".join(lines) + "\n"


def ensure_mdp(mdp_dir: str, name: str, params: Mapping[str, Any]) -> str:
    """Return ``<mdp_dir>/<name>.mdp``, rendering it only if it does not exist.

    User-edited files in the project's ``mdp/`` directory always win over
    the built-in template.
    """
    path = os.path.join(mdp_dir, f"{name}.mdp")
    if os.path.isfile(path):
        logger.debug("Using existing mdp file: %s", path)
        return path
    os.makedirs(mdp_dir, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(render_mdp(name, params))
    logger.info("Wrote mdp template: %s", path)
    return path


__all__ = ["MDP_TEMPLATES", "ensure_mdp", "render_mdp"]
