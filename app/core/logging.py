"""Console logging for the API, workers and CLI.

Lines read ``time | LEVEL | logger | [run_id] message {extras as JSON}`` so a
single run can be followed across stage agents, tools and the worker pool.
"""

import json
import logging
import sys

from app.config import settings

LOGGER_NAMESPACES = ("app", "scripts")

# Chatty at INFO: one line per HTTP request / scheduler wakeup.
QUIET_LOGGERS = ("httpx", "httpcore", "apscheduler")

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_STANDARD_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class RunAwareFormatter(logging.Formatter):
    """Readable prefix, ``run_id`` lifted out of the extras, the rest as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_ATTRS and not key.startswith("_")
        }
        run_id = extras.pop("run_id", None)

        line = f"{self.formatTime(record, self.datefmt)} | {record.levelname:<8} | {record.name} | "
        if run_id:
            line += f"[{run_id}] "
        line += record.message
        if extras:
            try:
                line = f"{line} {json.dumps(extras, default=str, ensure_ascii=False)}"
            except (TypeError, ValueError):
                line = f"{line} {extras!r}"

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            line = f"{line}\n{record.exc_text}"
        return line


def resolve_level(level: int | str | None = None) -> int:
    """Accept a logging constant or a level name; default to ``LOG_LEVEL``."""
    if isinstance(level, int):
        return level
    name = (level or settings.log_level).upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: int | str | None = None) -> None:
    """Attach one stdout handler per project namespace; safe to call repeatedly."""
    resolved = resolve_level(level)
    for namespace in LOGGER_NAMESPACES:
        logger = logging.getLogger(namespace)
        logger.setLevel(resolved)
        if logger.handlers:
            continue
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(RunAwareFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
        logger.propagate = False

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))
