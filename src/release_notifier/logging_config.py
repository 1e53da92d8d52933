"""Structured logging configuration.

Every action the notifier attempts (tag resolution, PR selection, comment,
label removal, issue close) is logged as a structlog event with key/value
context, so a CI log can be grepped for a PR or issue number:

  {"event": "comment_posted", "target": 123, "kind": "issue"}

In CI (or with ENVIRONMENT=production) logs are rendered as JSON lines;
locally they use structlog's console renderer.

Usage:
    from release_notifier.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("tag_resolved", current="v1.1.0", previous="v1.0.0")
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

from release_notifier.errors import ConfigurationError

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def setup_logging(
    environment: str | None = None,
    log_level: str | None = None,
) -> None:
    """Configure structlog and the standard library root logger.

    Args:
        environment: "development" or "production". Reads ENVIRONMENT if not
                     provided; defaults to "production" when running under
                     GitHub Actions and "development" otherwise.
        log_level: DEBUG, INFO, WARNING or ERROR. Reads LOG_LEVEL if not provided.

    Raises:
        ConfigurationError: If the log level is not one of LOG_LEVELS
    """
    default_env = "production" if os.environ.get("GITHUB_ACTIONS") == "true" else "development"
    env = environment or os.environ.get("ENVIRONMENT", default_env)

    level_name = (log_level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    if level_name not in LOG_LEVELS:
        raise ConfigurationError(
            f"Unknown log level {level_name!r}, expected one of {', '.join(LOG_LEVELS)}"
        )
    level = getattr(logging, level_name)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if env == "production":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # httpx logs every request at INFO; keep that at WARNING unless debugging
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> Any:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        A structlog bound logger
    """
    return structlog.get_logger(name)
