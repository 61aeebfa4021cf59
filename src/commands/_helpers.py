from __future__ import annotations

from pathlib import Path

from app_config import AppConfig


def to_resolved_path(path_text: str) -> Path:
    return Path(path_text).expanduser().resolve()


def is_subpath(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


def validate_project_dir(cfg: AppConfig, project_dir_raw: str, *, create: bool = False) -> Path:
    project_dir = to_resolved_path(project_dir_raw)
    allowed_root = to_resolved_path(cfg.runtime.allowed_root)
    if not is_subpath(project_dir, allowed_root):
        raise ValueError(
            f"Project directory must be under allowed_root: {allowed_root}. got={project_dir}"
        )
    if create:
        project_dir.mkdir(parents=True, exist_ok=True)
    elif not project_dir.is_dir():
        raise ValueError(f"Project directory not found: {project_dir}")
    return project_dir


def validate_workdir(cfg: AppConfig, workdir_raw: str) -> Path:
    workdir = to_resolved_path(workdir_raw)
    if not workdir.is_dir():
        raise ValueError(f"Working directory not found: {workdir}")
    allowed_root = to_resolved_path(cfg.runtime.allowed_root)
    if not is_subpath(workdir, allowed_root):
        raise ValueError(
            f"Working directory must be under allowed_root: {allowed_root}. got={workdir}"
        )
    return workdir
