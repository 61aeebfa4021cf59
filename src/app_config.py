"""Global application configuration for mdchain."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


_DEFAULT_CONFIG_DIR = os.path.expanduser("~/.mdchain")
_DEFAULT_CONFIG_PATH = os.path.join(_DEFAULT_CONFIG_DIR, "config.yaml")
_DEFAULT_ALLOWED_ROOT = os.path.expanduser("~/md_projects")

_TIME_LIMIT_RE = re.compile(r"^(?:(\d+)-)?(\d{1,2}):(\d{2}):(\d{2})$")


@dataclass
class RuntimeConfig:
    allowed_root: str = _DEFAULT_ALLOWED_ROOT
    safety_margin_minutes: int = 15


@dataclass
class SlurmConfig:
    sbatch: str = "sbatch"
    squeue: str = "squeue"
    sacct: str = "sacct"
    scancel: str = "scancel"
    partition: str | None = None
    account: str | None = None
    nodes: int = 1
    ntasks: int = 1
    cpus_per_task: int = 8
    gpus: int = 0
    mem: str | None = None
    time_limit: str = "24:00:00"
    module_loads: list[str] = field(default_factory=list)
    setup_lines: list[str] = field(default_factory=list)
    extra_directives: list[str] = field(default_factory=list)


@dataclass
class GmxConfig:
    binary: str = "gmx"
    ntomp: int | None = None
    mdrun_extra_args: list[str] = field(default_factory=list)


@dataclass
class AppConfig:
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    slurm: SlurmConfig = field(default_factory=SlurmConfig)
    gmx: GmxConfig = field(default_factory=GmxConfig)


def load_app_config(config_path: str | None = None) -> AppConfig:
    """Load application configuration from YAML.

    Config search order:
    1. ``config_path`` argument
    2. ``MDCHAIN_CONFIG`` environment variable
    3. ``~/.mdchain/config.yaml``

    Returns defaults when the target file does not exist.
    Raises ``ValueError`` for invalid YAML or invalid schema.
    """
    path = _resolve_config_path(config_path)
    if not path.exists():
        return AppConfig()

    import yaml

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML config: {path} ({exc})") from exc
    except OSError as exc:
        raise ValueError(f"Failed to read config file: {path} ({exc})") from exc

    if raw is None:
        return AppConfig()
    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping: {path}")

    cfg = _parse_app_config(raw)
    _validate_app_config(cfg)
    return cfg


def parse_time_limit(text: str) -> int:
    """Convert a SLURM ``[D-]HH:MM:SS`` time limit into seconds."""
    match = _TIME_LIMIT_RE.match(str(text).strip())
    if match is None:
        raise ValueError(f"Time limit must look like [D-]HH:MM:SS (got {text!r})")
    days, hours, minutes, seconds = match.groups()
    if int(minutes) >= 60 or int(seconds) >= 60:
        raise ValueError(f"Time limit minutes/seconds out of range (got {text!r})")
    return (
        int(days or 0) * 86400
        + int(hours) * 3600
        + int(minutes) * 60
        + int(seconds)
    )


def _resolve_config_path(config_path: str | None) -> Path:
    if config_path is not None:
        return Path(config_path).expanduser().resolve()
    env_path = os.environ.get("MDCHAIN_CONFIG", "").strip()
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path(_DEFAULT_CONFIG_PATH).expanduser().resolve()


def _parse_app_config(raw: dict[str, Any]) -> AppConfig:
    runtime_raw = _as_mapping(raw.get("runtime"))
    slurm_raw = _as_mapping(raw.get("slurm"))
    gmx_raw = _as_mapping(raw.get("gmx"))

    runtime = RuntimeConfig(
        allowed_root=_normalize_runtime_path(
            runtime_raw.get("allowed_root"),
            default=_DEFAULT_ALLOWED_ROOT,
            field_name="runtime.allowed_root",
        ),
        safety_margin_minutes=_as_int(
            runtime_raw.get("safety_margin_minutes"),
            default=RuntimeConfig.safety_margin_minutes,
            field_name="runtime.safety_margin_minutes",
        ),
    )
    return AppConfig(
        runtime=runtime,
        slurm=_parse_slurm_config(slurm_raw),
        gmx=_parse_gmx_config(gmx_raw),
    )


def _parse_slurm_config(raw: dict[str, Any]) -> SlurmConfig:
    defaults = SlurmConfig()
    return SlurmConfig(
        sbatch=_as_command(raw.get("sbatch"), default=defaults.sbatch, field_name="slurm.sbatch"),
        squeue=_as_command(raw.get("squeue"), default=defaults.squeue, field_name="slurm.squeue"),
        sacct=_as_command(raw.get("sacct"), default=defaults.sacct, field_name="slurm.sacct"),
        scancel=_as_command(
            raw.get("scancel"), default=defaults.scancel, field_name="slurm.scancel"
        ),
        partition=_as_optional_str(raw.get("partition"), field_name="slurm.partition"),
        account=_as_optional_str(raw.get("account"), field_name="slurm.account"),
        nodes=_as_int(raw.get("nodes"), default=defaults.nodes, field_name="slurm.nodes"),
        ntasks=_as_int(raw.get("ntasks"), default=defaults.ntasks, field_name="slurm.ntasks"),
        cpus_per_task=_as_int(
            raw.get("cpus_per_task"),
            default=defaults.cpus_per_task,
            field_name="slurm.cpus_per_task",
        ),
        gpus=_as_int(raw.get("gpus"), default=defaults.gpus, field_name="slurm.gpus"),
        mem=_as_optional_str(raw.get("mem"), field_name="slurm.mem"),
        time_limit=_as_time_limit(
            raw.get("time_limit"), default=defaults.time_limit, field_name="slurm.time_limit"
        ),
        module_loads=_normalize_string_list(
            raw.get("module_loads"), defaults=[], field_name="slurm.module_loads"
        ),
        setup_lines=_normalize_string_list(
            raw.get("setup_lines"), defaults=[], field_name="slurm.setup_lines"
        ),
        extra_directives=_normalize_string_list(
            raw.get("extra_directives"), defaults=[], field_name="slurm.extra_directives"
        ),
    )


def _parse_gmx_config(raw: dict[str, Any]) -> GmxConfig:
    ntomp_raw = raw.get("ntomp")
    return GmxConfig(
        binary=_as_command(raw.get("binary"), default=GmxConfig.binary, field_name="gmx.binary"),
        ntomp=None if ntomp_raw is None else _as_int(
            ntomp_raw, default=0, field_name="gmx.ntomp"
        ),
        mdrun_extra_args=_normalize_string_list(
            raw.get("mdrun_extra_args"), defaults=[], field_name="gmx.mdrun_extra_args"
        ),
    )


def _validate_app_config(cfg: AppConfig) -> None:
    if cfg.runtime.safety_margin_minutes < 1:
        raise ValueError(
            "runtime.safety_margin_minutes must be >= 1 "
            f"(got {cfg.runtime.safety_margin_minutes})"
        )

    slurm = cfg.slurm
    for name in ("nodes", "ntasks", "cpus_per_task"):
        value = getattr(slurm, name)
        if value < 1:
            raise ValueError(f"slurm.{name} must be >= 1 (got {value})")
    if slurm.gpus < 0:
        raise ValueError(f"slurm.gpus must be >= 0 (got {slurm.gpus})")
    limit_seconds = parse_time_limit(slurm.time_limit)
    margin_seconds = cfg.runtime.safety_margin_minutes * 60
    if limit_seconds <= margin_seconds:
        raise ValueError(
            "slurm.time_limit must exceed runtime.safety_margin_minutes: "
            f"time_limit={slurm.time_limit}, margin={cfg.runtime.safety_margin_minutes} min"
        )

    if cfg.gmx.ntomp is not None and cfg.gmx.ntomp < 1:
        raise ValueError(f"gmx.ntomp must be >= 1 (got {cfg.gmx.ntomp})")


def _as_mapping(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if value is None:
        return {}
    raise ValueError("Config sections must be mappings")


def _as_int(value: Any, *, default: int, field_name: str) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be an integer (got {value!r})")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field_name} must be an integer (got {value!r})") from exc


def _as_command(value: Any, *, default: str, field_name: str) -> str:
    if value is None:
        return default
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ValueError(f"{field_name} must be a non-empty string")


def _as_time_limit(value: Any, *, default: str, field_name: str) -> str:
    # YAML 1.1 reads an unquoted 24:00:00 as the base-60 integer 86400.
    if isinstance(value, int) and not isinstance(value, bool):
        hours, rest = divmod(value, 3600)
        minutes, seconds = divmod(rest, 60)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    return _as_command(value, default=default, field_name=field_name)


def _as_optional_str(value: Any, *, field_name: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    raise ValueError(f"{field_name} must be a string")


def _normalize_string_list(
    value: Any,
    *,
    defaults: list[str],
    field_name: str,
) -> list[str]:
    if value is None:
        return list(defaults)
    if not isinstance(value, list):
        raise ValueError(f"{field_name} must be a list")
    result: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"{field_name} entries must be strings")
        text = item.strip()
        if text:
            result.append(text)
    return result


def _normalize_runtime_path(value: Any, *, default: str, field_name: str) -> str:
    raw = default if value is None else value
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError(f"{field_name} must be a non-empty path string")
    path_text = raw.strip()
    path = Path(path_text).expanduser()
    if not path.is_absolute():
        raise ValueError(f"{field_name} must be an absolute path: {path_text!r}")
    return str(path.resolve())
