from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class StageResult:
    stage: str
    workdir: str
    outputs: list[str] = field(default_factory=list)
    next_tpr: str | None = None
