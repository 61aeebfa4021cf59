import os


def getenv_with_fallback(
    name: str,
    fallback_name: str | None = None,
    default: str | None = None,
) -> str | None:
    value = os.environ.get(name)
    if value is not None and value.strip():
        return value.strip()
    if fallback_name:
        fallback_value = os.environ.get(fallback_name)
        if fallback_value is not None and fallback_value.strip():
            return fallback_value.strip()
    return default


def env_truthy(name: str, fallback_name: str | None = None) -> bool:
    value = getenv_with_fallback(name, fallback_name)
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


def current_slurm_job_id() -> str | None:
    """Return the id of the enclosing SLURM allocation, if any."""
    return getenv_with_fallback("SLURM_JOB_ID", "SLURM_JOBID")
