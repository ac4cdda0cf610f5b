"""
Structured logging configuration using structlog.
"""

import logging

import structlog


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Configure stdlib logging and structlog once at startup.

    Args:
        level: Log level name
        fmt: "json" for machine-readable lines, "text" for console output
    """
    logging.basicConfig(level=getattr(logging, level.upper()), format="%(message)s")

    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
