from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

_LOGGING_CONFIGURED = False
_LOG_FILE: str | None = None


def setup_logging(filename: str | Path | None = None, level: int = logging.INFO) -> structlog.BoundLogger:
    """Set up structured logging for the code_digest package.

    The first call configures structlog and the stdlib root handler. Later calls
    are no-ops unless they name a different log file, in which case the stdlib
    handlers are swapped so the already-bound loggers keep working.

    Args:
        filename: Optional path to a log file. If None, logs are written to stderr.
        level: Minimum level of emitted events.

    Returns:
        A structlog logger instance configured for the code_digest package.
    """
    global _LOGGING_CONFIGURED, _LOG_FILE  # noqa: PLW0603
    wanted = str(filename) if filename else None
    if not _LOGGING_CONFIGURED or (wanted and wanted != _LOG_FILE):
        handlers: list[logging.Handler] = []
        if wanted:
            handlers.append(logging.FileHandler(wanted, encoding="utf-8"))
        else:
            handlers.append(logging.StreamHandler(sys.stderr))

        logging.basicConfig(
            level=level,
            handlers=handlers,
            format="%(message)s",
            force=True,
        )
        structlog.configure(
            processors=[
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_CONFIGURED = True
        _LOG_FILE = wanted

    return structlog.get_logger("code_digest")


logger = setup_logging()
