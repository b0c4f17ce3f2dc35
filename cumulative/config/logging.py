"""
Run Logging

Engine modules log through structlog into the standard library root handler.
Each run binds its context (application, environment, run id) once, so merger,
accumulator and store events of the same run can be correlated.
"""

import logging
import sys
import uuid
from typing import Optional

import structlog

from cumulative.config.settings import get_settings

PACKAGE_LOGGER = "cumulative"


def _renderer(log_format: str):
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging(log_level: Optional[str] = None, run_id: Optional[str] = None) -> str:
    """
    Configure structured logging and bind the run context.

    Args:
        log_level: Level for ``cumulative.*`` loggers (defaults to LOG_LEVEL)
        run_id: Identifier attached to every event; generated when omitted

    Returns:
        The bound run id
    """
    settings = get_settings()
    level = (log_level or settings.monitoring.log_level).upper()
    numeric_level = getattr(logging, level, logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processor=_renderer(settings.monitoring.log_format),
        foreign_pre_chain=shared_processors,
    ))

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(logging.WARNING)
    # Third-party libraries stay at WARNING; only engine loggers follow log_level
    logging.getLogger(PACKAGE_LOGGER).setLevel(numeric_level)

    run_id = run_id or uuid.uuid4().hex[:12]
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        app=settings.app_name,
        env=settings.app_env,
        run_id=run_id,
    )

    structlog.get_logger(f"{PACKAGE_LOGGER}.config").debug(
        "Logging configured",
        level=level,
        format=settings.monitoring.log_format,
    )
    return run_id
