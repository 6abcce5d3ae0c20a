"""Logging configuration for the command center."""

import logging
import sys

import structlog

# Standard-library loggers that are too chatty at INFO
QUIET_LOGGERS = {
    "paramiko": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "discord": logging.WARNING,
}


def setup_logging(service_name: str, log_level: str = "INFO") -> None:
    """
    Configure structured logging for a service.

    Every entry carries the service name. DEBUG switches to JSON output so
    event streams can be piped into other tools.
    """
    level = logging.getLevelName(log_level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer() if level == logging.DEBUG
            else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=service_name)

    # paramiko, uvicorn and discord log through the standard library
    logging.basicConfig(format="%(name)s: %(message)s", stream=sys.stdout, level=level)
    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, quiet_level))

    structlog.get_logger(service_name).info("Logging configured", log_level=log_level)
