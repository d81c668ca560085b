"""
Structured Logging Configuration

structlog setup with stdlib integration so that both ``structlog.get_logger()``
and ``logging.getLogger(__name__)`` loggers end up in the same handlers.
"""

import logging
import sys
from typing import Optional

import structlog

from .config import get_settings


def configure_logging(
    log_level: Optional[str] = None, log_format: Optional[str] = None
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Logging level, defaults to ``LOG_LEVEL`` from settings
        log_format: ``json`` or ``console``, defaults to ``LOG_FORMAT``
    """
    settings = get_settings()
    level = (log_level or settings.LOG_LEVEL).upper()
    renderer_name = log_format or settings.LOG_FORMAT

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level, logging.INFO),
    )

    if renderer_name == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
