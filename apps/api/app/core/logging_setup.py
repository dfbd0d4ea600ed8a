"""structlog/stdlib logging bootstrap for the relay API."""

import logging
import logging.config
import os

import structlog
from structlog.dev import ConsoleRenderer

_CONFIGURED = False


def _is_local_environment(environment: str | None = None) -> bool:
    env = (environment if environment is not None else os.environ.get("ENVIRONMENT", "")).lower()
    return env in ("", "local", "development", "dev", "test")


def configure_logging(log_level: str, environment: str | None = None) -> None:
    """Configure structured logging.

    - Local/development: colored console lines
    - Anything else: one JSON object per line
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        ConsoleRenderer(colors=True, pad_event=40)
        if _is_local_environment(environment)
        else structlog.processors.JSONRenderer()
    )

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        renderer,
                    ],
                    "foreign_pre_chain": shared_processors,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "structured",
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {
                "handlers": ["default"],
                "level": log_level,
            },
            "loggers": {
                "uvicorn.access": {"level": "INFO"},
                "uvicorn.error": {"level": "INFO"},
                "asyncpg": {"level": "WARNING"},
                "httpx": {"level": "WARNING"},
            },
        }
    )

    _CONFIGURED = True
