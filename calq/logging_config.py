"""structlog setup shared by the client modules."""
import logging
import sys
from typing import Any

import structlog

from calq.config import settings


def configure_logging(level: str | None = None) -> None:
    """JSON lines on stdout, filtered at ``level`` (defaults to CALQ_LOG_LEVEL)."""
    level_name = (level or settings.log_level).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(**initial_values: Any) -> Any:
    return structlog.get_logger("calq", **initial_values)
