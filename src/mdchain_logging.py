import json
import logging
import os
from contextlib import contextmanager
from datetime import datetime

CHAIN_LOG_FILE = "chain.log"
CHAIN_EVENTS_FILE = "chain_events.jsonl"
LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(chain_id)s] %(name)s: %(message)s"


class ChainIdFilter(logging.Filter):
    def __init__(self, chain_id):
        super().__init__()
        self._chain_id = chain_id or "-"

    def filter(self, record):
        record.chain_id = self._chain_id
        return True


class JsonLineHandler(logging.Handler):
    def __init__(self, path, chain_id=None):
        super().__init__()
        self._path = path
        self._chain_id = chain_id
        self._stream = open(path, "a", encoding="utf-8")
        self._exception_formatter = logging.Formatter()

    def emit(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "chain_id": self._chain_id,
            "job_id": getattr(record, "job_id", None),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exception"] = self._exception_formatter.formatException(record.exc_info)
        self._stream.write(json.dumps(payload, ensure_ascii=False) + "\n")
        self._stream.flush()

    def close(self):
        try:
            if self._stream:
                self._stream.close()
        finally:
            self._stream = None
            super().close()


class _JobIdFilter(logging.Filter):
    def __init__(self, job_id):
        super().__init__()
        self._job_id = job_id

    def filter(self, record):
        record.job_id = self._job_id
        return True


def attach_chain_handlers(workdir, chain_id, job_id=None, verbose=False):
    """Add ``chain.log`` and ``chain_events.jsonl`` handlers to the root logger."""
    os.makedirs(workdir, exist_ok=True)
    level = logging.DEBUG if verbose else logging.INFO
    chain_filter = ChainIdFilter(chain_id)
    job_filter = _JobIdFilter(job_id)

    file_handler = logging.FileHandler(
        os.path.join(workdir, CHAIN_LOG_FILE), encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    file_handler.addFilter(chain_filter)

    event_handler = JsonLineHandler(os.path.join(workdir, CHAIN_EVENTS_FILE), chain_id=chain_id)
    event_handler.setLevel(logging.INFO)
    event_handler.addFilter(chain_filter)
    event_handler.addFilter(job_filter)

    root_logger = logging.getLogger()
    if root_logger.level > level or root_logger.level == logging.NOTSET:
        root_logger.setLevel(level)
    handlers = [file_handler, event_handler]
    for handler in handlers:
        root_logger.addHandler(handler)
    return handlers


def detach_chain_handlers(handlers):
    root_logger = logging.getLogger()
    for handler in handlers:
        root_logger.removeHandler(handler)
        handler.close()


@contextmanager
def chain_logging_context(workdir, chain_id, job_id=None, verbose=False):
    handlers = attach_chain_handlers(workdir, chain_id, job_id=job_id, verbose=verbose)
    try:
        yield handlers
    finally:
        detach_chain_handlers(handlers)
