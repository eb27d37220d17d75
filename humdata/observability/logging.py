"""
Structured logging for the orchestrator.

Every event carries the app name and environment. Fetch paths run inside
source_context() so their events also carry `source_id`; callers such as
the CLI bind broader fields (`command`, `view`) with bind_context().
Production renders JSON, development renders colored console lines.
Output goes to stderr so CLI output on stdout stays machine-readable.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from humdata.config.settings import get_settings

APP_NAME = "humdata"

# Libraries whose INFO output would drown per-source events
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def _app_context(environment: str) -> Processor:
    def add_app_context(
        logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict.setdefault("app", APP_NAME)
        event_dict.setdefault("environment", environment)
        return event_dict

    return add_app_context


def setup_logging(level: str | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Overrides the configured log level (e.g. "DEBUG" for --debug)

    Usage:
        setup_logging()
        with source_context("tech4palestine"):
            logger.info("Fetched source", attempts=2)
    """
    settings = get_settings()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _app_context(settings.environment),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.is_production:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level or settings.log_level),
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind fields (command, view, refresh id) to all later events."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def source_context(source_id: str, **kwargs: Any) -> Iterator[None]:
    """
    Tag events inside the block with `source_id`.

    Bindings are restored on exit, so concurrent fetches running in
    their own tasks never see each other's source.
    """
    with structlog.contextvars.bound_contextvars(source_id=source_id, **kwargs):
        yield
