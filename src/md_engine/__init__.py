from .errors import CheckpointCorruptError, ExternalToolError, MissingInputError
from .gmx_runner import GmxResult, GmxRunner, require_inputs
from .mdrun import MdrunRequest, MdrunResult, build_mdrun_command, execute_mdrun
from .run_state import (
    CheckpointStatus,
    LogProgress,
    RunStateSnapshot,
    inspect_checkpoint,
    inspect_run_state,
)

__all__ = [
    "CheckpointCorruptError",
    "CheckpointStatus",
    "ExternalToolError",
    "GmxResult",
    "GmxRunner",
    "LogProgress",
    "MdrunRequest",
    "MdrunResult",
    "MissingInputError",
    "RunStateSnapshot",
    "build_mdrun_command",
    "execute_mdrun",
    "inspect_checkpoint",
    "inspect_run_state",
    "require_inputs",
]
