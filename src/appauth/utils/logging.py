"""
Global structlog configuration.
"""
import logging

import structlog

from ..config import LoggingConfig


def configure_logging(logging_config: LoggingConfig) -> None:
    """Configures structlog (and the stdlib root logger it writes through)."""
    level = getattr(logging, logging_config.level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=level)

    renderer = (
        structlog.dev.ConsoleRenderer(colors=True)
        if logging_config.format.lower() == "console"
        else structlog.processors.JSONRenderer(sort_keys=True)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    structlog.get_logger(__name__).debug(
        "Logging configured.", logging_level=logging_config.level, logging_format=logging_config.format
    )
