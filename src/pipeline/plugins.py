"""Lazy-loaded setup-pipeline stages.

This module is the only place that resolves stage implementations by name.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable
from typing import Any

from env_compat import env_truthy

logger = logging.getLogger(__name__)


class FeatureUnavailableError(RuntimeError):
    """Raised when a pipeline stage is unknown, disabled or unavailable."""


STAGE_ORDER = ("prep", "em", "nvt", "npt", "analysis")

_STAGE_TARGETS: dict[str, tuple[str, str]] = {
    "prep": ("pipeline.stage_prep", "run_prep_stage"),
    "em": ("pipeline.stage_equilibration", "run_em_stage"),
    "nvt": ("pipeline.stage_equilibration", "run_nvt_stage"),
    "npt": ("pipeline.stage_equilibration", "run_npt_stage"),
    "analysis": ("pipeline.stage_analysis", "run_analysis_stage"),
}

_DISABLE_ENV: dict[str, str] = {
    "analysis": "MDCHAIN_DISABLE_ANALYSIS",
}


def _is_disabled(stage: str) -> bool:
    env_name = _DISABLE_ENV.get(stage)
    return bool(env_name and env_truthy(env_name))


def _resolve_callable(module_name: str, attr_name: str) -> Callable[..., Any]:
    module = importlib.import_module(module_name)
    fn = getattr(module, attr_name, None)
    if not callable(fn):
        raise FeatureUnavailableError(
            f"Invalid stage target: {module_name}.{attr_name} is not callable."
        )
    return fn


def load_stage_runner(stage_name: str) -> Callable[..., Any]:
    normalized = str(stage_name).strip().lower()
    if normalized not in _STAGE_TARGETS:
        available = ", ".join(STAGE_ORDER)
        raise FeatureUnavailableError(
            f"Unsupported stage '{stage_name}'. Available stages: {available}."
        )
    if _is_disabled(normalized):
        env_name = _DISABLE_ENV.get(normalized)
        raise FeatureUnavailableError(f"Stage '{normalized}' is disabled by {env_name}=1.")
    module_name, attr_name = _STAGE_TARGETS[normalized]
    try:
        return _resolve_callable(module_name, attr_name)
    except ModuleNotFoundError as exc:
        raise FeatureUnavailableError(
            f"Stage '{normalized}' is unavailable: missing dependency ({exc.name})."
        ) from exc


def run_stage(stage_name: str, *args: Any, **kwargs: Any) -> Any:
    runner = load_stage_runner(stage_name)
    logger.debug("Resolved stage '%s' to %s", stage_name, getattr(runner, "__name__", runner))
    return runner(*args, **kwargs)
