"""Log file configuration for CLI invocations."""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(script)s] [%(task)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 3


class _ContextFilter(logging.Filter):
    """Stamps every record with the invoking command and task name."""

    def __init__(self, script: str, task: str) -> None:
        super().__init__()
        self.script = script
        self.task = task

    def filter(self, record: logging.LogRecord) -> bool:
        record.script = self.script
        record.task = self.task
        return True


_context = _ContextFilter(script="-", task="-")


def configure_logging(log_path: Path | None, *, debug: bool = False, script: str = "-") -> None:
    """Attach file (and, with ``debug``, stderr) handlers to the package logger."""

    package_logger = logging.getLogger("taskmux")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    package_logger.propagate = False
    _context.script = script
    _context.task = "-"

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    if log_path is not None:
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler: logging.Handler = logging.handlers.RotatingFileHandler(
                log_path,
                maxBytes=LOG_MAX_BYTES,
                backupCount=LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError:
            file_handler = logging.NullHandler()
        file_handler.setFormatter(formatter)
        file_handler.addFilter(_context)
        package_logger.addHandler(file_handler)
    if debug:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        stream_handler.addFilter(_context)
        package_logger.addHandler(stream_handler)
    if not package_logger.handlers:
        package_logger.addHandler(logging.NullHandler())


def set_log_task(name: str) -> None:
    _context.task = name or "-"
