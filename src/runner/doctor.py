"""Runtime environment diagnostics for mdchain."""

from __future__ import annotations

import importlib.util
import shutil

from app_config import AppConfig, load_app_config


def run_doctor(config_path: str | None = None) -> int:
    """Check the GROMACS/SLURM binaries and Python dependencies.

    Returns:
        Exit code (0 = all checks passed, 1 = at least one failure).
    """

    def format_doctor_result(label: str, status: bool, remedy: str | None = None) -> str:
        status_label = "OK" if status else "FAIL"
        separator = "  " if status_label == "OK" else " "
        if status:
            return f"{status_label}{separator}{label}"
        if remedy:
            return f"{status_label}{separator}{label} ({remedy})"
        return f"{status_label}{separator}{label}"

    failures: list[str] = []

    def _record_check(label: str, ok: bool, remedy: str | None = None) -> None:
        if not ok:
            failures.append(label)
        print(format_doctor_result(label, ok, remedy))

    def _check_binary(binary: str, hint: str, label: str) -> None:
        resolved = shutil.which(binary)
        _record_check(f"{label} ({resolved or binary})", resolved is not None, hint)

    def _check_import(module_name: str, hint: str) -> None:
        spec = importlib.util.find_spec(module_name)
        _record_check(module_name, spec is not None, hint if spec is None else None)

    try:
        app_config = load_app_config(config_path)
        _record_check("config", True)
    except ValueError as exc:
        _record_check("config", False, str(exc))
        app_config = AppConfig()

    _check_binary(app_config.gmx.binary, "Load the GROMACS module or set gmx.binary", "gmx")
    slurm = app_config.slurm
    for label, binary in (
        ("sbatch", slurm.sbatch),
        ("squeue", slurm.squeue),
        ("sacct", slurm.sacct),
        ("scancel", slurm.scancel),
    ):
        _check_binary(binary, "Run on a SLURM login node or set slurm." + label, label)

    for module_name in ("yaml", "pydantic", "jsonschema"):
        _check_import(module_name, "Install with: pip install mdchain")

    print(f"INFO allowed_root = {app_config.runtime.allowed_root}")
    print(f"INFO time_limit = {slurm.time_limit}")
    print(f"INFO safety_margin_minutes = {app_config.runtime.safety_margin_minutes}")

    if failures:
        print(f"FAIL {len(failures)} checks failed: {', '.join(failures)}")
        return 1
    print("OK  all checks passed")
    return 0
