"""Logging setup — stdlib logging with structlog routed through it.

Library modules log with ``logging.getLogger(__name__)``; the run
controller and engine emit structlog key/value events. Both end up on
the same stdlib handlers so one level setting governs everything.
"""

from __future__ import annotations

import logging
import sys

import structlog

from evoforge.config import settings


def configure_logging(log_level: str | None = None, json_output: bool = False) -> None:
    """Configure stdlib logging and structlog.

    Args:
        log_level: Logging level name; defaults to ``settings.log_level``.
        json_output: Render structlog events as JSON instead of console text.
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)

    processors: list[object] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
        level=level,
    )
