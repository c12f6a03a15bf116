from __future__ import annotations

import contextvars
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(job_id)s | %(clip_type)s | %(bucket)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOG_FILE = "logs/storyclip.log"

LOG_JOB_ID: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("log_job_id", default=None)
LOG_CLIP_TYPE: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("log_clip_type", default=None)
LOG_BUCKET: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("log_bucket", default=None)


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.job_id = LOG_JOB_ID.get() or "-"
        record.clip_type = LOG_CLIP_TYPE.get() or "-"
        record.bucket = LOG_BUCKET.get() or "-"
        return True


@contextmanager
def log_context(
    job_id: Optional[str] = None,
    clip_type: Optional[str] = None,
    bucket: Optional[str] = None,
) -> Iterator[None]:
    tokens = []
    if job_id is not None:
        tokens.append((LOG_JOB_ID, LOG_JOB_ID.set(job_id)))
    if clip_type is not None:
        tokens.append((LOG_CLIP_TYPE, LOG_CLIP_TYPE.set(clip_type)))
    if bucket is not None:
        tokens.append((LOG_BUCKET, LOG_BUCKET.set(bucket)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def configure_logging(
    log_file: Optional[str] = None,
    level: int = logging.INFO,
    enable_console: bool = False,
    force: bool = False,
) -> logging.Logger:
    root = logging.getLogger()
    if getattr(root, "_storyclip_logging_configured", False) and not force:
        return root

    if force:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for log_filter in list(root.filters):
            root.removeFilter(log_filter)

    log_path = Path(log_file or os.getenv("STORYCLIP_LOG_FILE") or DEFAULT_LOG_FILE)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    context_filter = ContextFilter()

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    # Handler-level filter so records from child loggers get the fields too.
    file_handler.addFilter(context_filter)

    root.addHandler(file_handler)
    if enable_console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler.addFilter(context_filter)
        root.addHandler(stream_handler)

    root.addFilter(context_filter)
    root.setLevel(level)
    logging.captureWarnings(True)
    root._storyclip_logging_configured = True
    return root
