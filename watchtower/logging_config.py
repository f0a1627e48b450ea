"""
WATCHTOWER - Structured Logging
===============================
structlog setup shared by the API server, the arq worker and the CLI.

Every sweep and poll loop logs key/value events (``polling_started``,
``breach_alert_created``...). Console rendering for development and tests,
JSON lines everywhere else.
"""

import logging
import sys

import structlog

from watchtower.config import Settings, settings

# Chatty third-party loggers; their INFO lines repeat what our events already say.
QUIET_LOGGERS = ("httpx", "httpcore", "arq.worker", "sqlalchemy.engine")


def use_json_output(config: Settings = settings) -> bool:
    if config.log_json is not None:
        return config.log_json
    return not (config.debug or config.environment in ("development", "test"))


def resolve_level(config: Settings = settings) -> int:
    if config.debug:
        return logging.DEBUG
    level = logging.getLevelName(config.log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def build_processors(json_output: bool) -> list:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def configure_logging(config: Settings = settings) -> None:
    """Configure structlog and the stdlib root logger it writes through."""
    level = resolve_level(config)

    structlog.configure(
        processors=build_processors(use_json_output(config)),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
