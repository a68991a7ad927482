"""
structlog configuration shared by the API and the scheduler
"""

import logging

import structlog

from snowball.config import LOG_FORMAT, LOG_LEVEL


def _get_log_level() -> int:
    return getattr(logging, LOG_LEVEL, logging.INFO)


def configure_logging() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
            if LOG_FORMAT == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_get_log_level()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
