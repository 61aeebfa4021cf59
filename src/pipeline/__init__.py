from .layout import ProjectLayout
from .plugins import STAGE_ORDER, FeatureUnavailableError, load_stage_runner, run_stage
from .types import StageResult

__all__ = [
    "FeatureUnavailableError",
    "ProjectLayout",
    "STAGE_ORDER",
    "StageResult",
    "load_stage_runner",
    "run_stage",
]
