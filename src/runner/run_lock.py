"""Lock file that keeps a Run State single-writer across attempts."""

from __future__ import annotations

import contextlib
import json
import os
import socket
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Generator

_LOCK_FILE = "chain.lock"


@contextlib.contextmanager
def acquire_attempt_lock(
    workdir: str,
    *,
    job_id: str | None = None,
    job_active: Callable[[str], bool] | None = None,
) -> Generator[None, None, None]:
    """Hold an exclusive lock on the working directory for one attempt.

    A lock left by a dead process on this host, or by a job the scheduler no
    longer lists as active, is treated as stale and replaced.

    Raises:
        RuntimeError: If another attempt on the same Run State is alive.
    """
    lock_path = Path(workdir) / _LOCK_FILE
    payload = {
        "pid": os.getpid(),
        "host": socket.gethostname(),
        "job_id": job_id,
        "started_at": datetime.now(timezone.utc).isoformat(),
    }
    _acquire_lock_file(lock_path, payload, job_active)
    try:
        yield
    finally:
        try:
            lock_path.unlink()
        except OSError:
            pass


def _acquire_lock_file(
    lock_path: Path,
    payload: dict[str, object],
    job_active: Callable[[str], bool] | None,
) -> None:
    flags = os.O_CREAT | os.O_EXCL | os.O_WRONLY | getattr(os, "O_NOFOLLOW", 0)
    while True:
        try:
            fd = os.open(str(lock_path), flags, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(json.dumps(payload, ensure_ascii=True) + "\n")
                handle.flush()
                os.fsync(handle.fileno())
            return
        except FileExistsError:
            info = _read_lock_info(lock_path)
            if info is None:
                raise RuntimeError(
                    f"Lock file exists but is unreadable. Remove manually: {lock_path}"
                ) from None
            if _owner_alive(info, job_active):
                raise RuntimeError(
                    "Another attempt is active on this run "
                    f"(pid={info.get('pid')}, host={info.get('host')}, "
                    f"job_id={info.get('job_id')}). Lock file: {lock_path}"
                ) from None
            try:
                lock_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                raise RuntimeError(
                    f"Detected stale lock but failed to remove it: {lock_path}. error={exc}"
                ) from exc


def _read_lock_info(lock_path: Path) -> dict[str, object] | None:
    try:
        raw = lock_path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return {}
    except OSError:
        return None
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _owner_alive(
    info: dict[str, object],
    job_active: Callable[[str], bool] | None,
) -> bool:
    if not info:
        return False
    pid = info.get("pid")
    host = info.get("host")
    job_id = info.get("job_id")
    if host == socket.gethostname() and isinstance(pid, int):
        return _is_process_alive(pid)
    if isinstance(job_id, str) and job_id and job_active is not None:
        return job_active(job_id)
    # Owner on another host with no way to ask the scheduler: assume alive.
    return True


def _is_process_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True
