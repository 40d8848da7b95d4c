"""structlog setup for the ledger service.

Everything logged while an account scope is open carries that scope's
``account_id`` through structlog's context variables, so storage and
commission events can be filtered per account without threading the id
through every call.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Literal, Optional
from uuid import UUID

import structlog
from structlog.contextvars import bound_contextvars

from susu.config.settings import get_settings

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]


def _renderer(log_format: LogFormat) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging(level: Optional[LogLevel] = None, format: Optional[LogFormat] = None) -> None:
    """Route structlog through stdlib logging at the configured level and format.

    Arguments left as ``None`` fall back to ``SUSU_LOG_LEVEL`` / ``SUSU_LOG_FORMAT``.
    """
    settings = get_settings()
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level or settings.log_level),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            _renderer(format or settings.log_format),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def account_log_context(account_id: UUID) -> Iterator[None]:
    """Bind ``account_id`` to every log line emitted inside the block."""
    with bound_contextvars(account_id=str(account_id)):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
