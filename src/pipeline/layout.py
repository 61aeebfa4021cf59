from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ProjectLayout:
    """Directory layout of one simulation project.

    Each stage works in its own numbered directory; the shared topology
    (``topol.top`` plus included ``*.itp``) lives at the project root.
    """

    root: str

    @property
    def mdp_dir(self) -> str:
        return os.path.join(self.root, "mdp")

    @property
    def prep_dir(self) -> str:
        return os.path.join(self.root, "01_prep")

    @property
    def em_dir(self) -> str:
        return os.path.join(self.root, "02_em")

    @property
    def nvt_dir(self) -> str:
        return os.path.join(self.root, "03_nvt")

    @property
    def npt_dir(self) -> str:
        return os.path.join(self.root, "04_npt")

    @property
    def md_dir(self) -> str:
        return os.path.join(self.root, "05_md")

    @property
    def analysis_dir(self) -> str:
        return os.path.join(self.root, "06_analysis")

    @property
    def topology(self) -> str:
        return os.path.join(self.root, "topol.top")

    def stage_dirs(self) -> list[str]:
        return [
            self.mdp_dir,
            self.prep_dir,
            self.em_dir,
            self.nvt_dir,
            self.npt_dir,
            self.md_dir,
            self.analysis_dir,
        ]

    def ensure_dirs(self) -> None:
        for path in self.stage_dirs():
            os.makedirs(path, exist_ok=True)


__all__ = ["ProjectLayout"]
