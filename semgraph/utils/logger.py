"""
Structured Logging with Rich.

Provides consistent, colorful logging across the engine, plus helpers that
attach snapshot/session context and operation timings to log records.
"""

import logging
import time
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from functools import lru_cache
from typing import Any

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(level: str | None = None) -> None:
    """
    Configure root logger with Rich handler.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Defaults to the configured ``log_level`` setting.
    """
    if level is None:
        from app.config import get_settings

        level = get_settings().log_level

    console = Console(stderr=True)

    logging.basicConfig(
        level=level,
        format="%(name)s | %(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console,
                rich_tracebacks=True,
                tracebacks_show_locals=True,
                show_time=True,
                show_path=False,
            )
        ],
    )

    # The session sweeper runs on the event loop; keep asyncio debug chatter out
    logging.getLogger("asyncio").setLevel(logging.WARNING)


@lru_cache(maxsize=128)
def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the given module name.

    Args:
        name: Module name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


class LogContext(logging.LoggerAdapter):
    """
    Logger that stamps extra fields onto the records it emits.

    Only records logged through the adapter carry the fields, so several
    stores rebuilding on different threads never see each other's context.

    Usage:
        log = LogContext(logger, generation=3)
        log.info("Rebuilding snapshot")
    """

    def __init__(self, logger: logging.Logger, **context: str | int | float) -> None:
        super().__init__(logger, context)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


@contextmanager
def log_duration(
    logger: logging.Logger | logging.LoggerAdapter,
    operation: str,
    level: int = logging.DEBUG,
) -> Iterator[dict[str, float]]:
    """
    Log how long a block took.

    Yields a dict that receives ``seconds`` once the block exits, so callers
    can report the duration themselves as well.
    """
    timing: dict[str, float] = {}
    start = time.perf_counter()
    try:
        yield timing
    finally:
        timing["seconds"] = time.perf_counter() - start
        logger.log(level, f"{operation} took {timing['seconds'] * 1000:.1f}ms")
