"""Job Descriptor: the reusable submission template for production attempts.

Written once to ``job.json`` when the chain starts and read back unchanged
by every later attempt. Only the resume flag varies between submissions.
"""

from __future__ import annotations

import json
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from app_config import AppConfig, parse_time_limit

DESCRIPTOR_FILE = "job.json"


class DescriptorModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ResourceRequest(DescriptorModel):
    partition: str | None = None
    account: str | None = None
    nodes: int = Field(default=1, ge=1)
    ntasks: int = Field(default=1, ge=1)
    cpus_per_task: int = Field(default=1, ge=1)
    gpus: int = Field(default=0, ge=0)
    mem: str | None = None
    extra_directives: list[str] = Field(default_factory=list)


class EnvironmentSetup(DescriptorModel):
    module_loads: list[str] = Field(default_factory=list)
    setup_lines: list[str] = Field(default_factory=list)


class JobDescriptor(DescriptorModel):
    chain_id: str
    name: str = Field(min_length=1)
    workdir: str
    deffnm: str = "md"
    tpr: str = "md.tpr"
    target_steps: int = Field(gt=0)
    time_limit: str = "24:00:00"
    safety_margin_minutes: int = Field(default=15, ge=1)
    resources: ResourceRequest = Field(default_factory=ResourceRequest)
    environment: EnvironmentSetup = Field(default_factory=EnvironmentSetup)
    gmx_binary: str = "gmx"
    ntomp: int | None = None
    mdrun_extra_args: list[str] = Field(default_factory=list)
    controller_command: list[str] = Field(default_factory=lambda: ["mdchain"])

    @field_validator("workdir")
    @classmethod
    def _absolute_workdir(cls, value: str) -> str:
        if not os.path.isabs(value):
            raise ValueError(f"workdir must be absolute (got {value!r})")
        return value

    @field_validator("time_limit")
    @classmethod
    def _parsable_time_limit(cls, value: str) -> str:
        parse_time_limit(value)
        return value

    @model_validator(mode="after")
    def _margin_fits_time_limit(self) -> "JobDescriptor":
        if self.time_limit_seconds <= self.safety_margin_minutes * 60:
            raise ValueError(
                f"time_limit {self.time_limit} leaves no room for a "
                f"{self.safety_margin_minutes} min safety margin"
            )
        return self

    @property
    def time_limit_seconds(self) -> int:
        return parse_time_limit(self.time_limit)

    @property
    def maxh_hours(self) -> float:
        """Wall-clock budget handed to ``mdrun -maxh``: limit minus margin."""
        budget = self.time_limit_seconds - self.safety_margin_minutes * 60
        return budget / 3600.0

    @property
    def checkpoint_path(self) -> str:
        return os.path.join(self.workdir, f"{self.deffnm}.cpt")

    @property
    def tpr_path(self) -> str:
        return os.path.join(self.workdir, self.tpr)


def generate_chain_id() -> str:
    """Generate a unique chain ID: ``chain_YYYYMMDD_HHMMSS_<8hex>``."""
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"chain_{ts}_{uuid.uuid4().hex[:8]}"


def build_descriptor(
    *,
    workdir: str,
    target_steps: int,
    app_config: AppConfig,
    name: str | None = None,
    deffnm: str = "md",
    tpr: str | None = None,
    time_limit: str | None = None,
    controller_command: list[str] | None = None,
) -> JobDescriptor:
    workdir = str(Path(workdir).expanduser().resolve())
    slurm = app_config.slurm
    payload: dict[str, Any] = {
        "chain_id": generate_chain_id(),
        "name": name or f"md_{os.path.basename(os.path.dirname(workdir)) or 'run'}",
        "workdir": workdir,
        "deffnm": deffnm,
        "tpr": tpr or f"{deffnm}.tpr",
        "target_steps": target_steps,
        "time_limit": time_limit or slurm.time_limit,
        "safety_margin_minutes": app_config.runtime.safety_margin_minutes,
        "resources": {
            "partition": slurm.partition,
            "account": slurm.account,
            "nodes": slurm.nodes,
            "ntasks": slurm.ntasks,
            "cpus_per_task": slurm.cpus_per_task,
            "gpus": slurm.gpus,
            "mem": slurm.mem,
            "extra_directives": list(slurm.extra_directives),
        },
        "environment": {
            "module_loads": list(slurm.module_loads),
            "setup_lines": list(slurm.setup_lines),
        },
        "gmx_binary": app_config.gmx.binary,
        "ntomp": app_config.gmx.ntomp,
        "mdrun_extra_args": list(app_config.gmx.mdrun_extra_args),
    }
    if controller_command:
        payload["controller_command"] = list(controller_command)
    try:
        descriptor = JobDescriptor.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid job descriptor: {exc}") from exc
    return descriptor


def descriptor_path(workdir: str) -> str:
    return os.path.join(workdir, DESCRIPTOR_FILE)


def save_descriptor(descriptor: JobDescriptor) -> str:
    path = descriptor_path(descriptor.workdir)
    tmp_path = path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(descriptor.to_dict(), handle, indent=2, ensure_ascii=False)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)
    return path


def load_descriptor(workdir: str) -> JobDescriptor:
    """Load ``job.json``; raises ``FileNotFoundError`` or ``ValueError``."""
    path = descriptor_path(workdir)
    with open(path, "r", encoding="utf-8") as handle:
        try:
            raw = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid job descriptor JSON: {path} ({exc})") from exc
    try:
        return JobDescriptor.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(f"Invalid job descriptor: {path} ({exc})") from exc


__all__ = [
    "DESCRIPTOR_FILE",
    "EnvironmentSetup",
    "JobDescriptor",
    "ResourceRequest",
    "build_descriptor",
    "descriptor_path",
    "generate_chain_id",
    "load_descriptor",
    "save_descriptor",
]
