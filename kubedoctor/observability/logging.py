"""Structured logging configuration using structlog.

Log lines go to stderr as JSON. stdout is reserved for the MCP stdio
transport, so nothing in this package may print log output there.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import cast

import structlog
from structlog.typing import FilteringBoundLogger

_VALID_LEVELS: frozenset[str] = frozenset({"debug", "info", "warning", "error", "critical"})


def setup_logging(level: str = "info", *, json_output: bool = True) -> None:
    """Configure structlog processors and the stderr logger factory.

    ``json_output=False`` swaps the JSON renderer for the console renderer,
    which the CLI uses when running the server in a terminal.
    """
    normalised = level.lower()
    if normalised not in _VALID_LEVELS:
        normalised = "info"
    log_level = getattr(logging, normalised.upper())

    renderer: structlog.typing.Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> FilteringBoundLogger:
    """Get a logger bound with a component name."""
    return cast(FilteringBoundLogger, structlog.get_logger(component=component))


@contextmanager
def bound_operation(operation: str, **fields: object) -> Iterator[None]:
    """Bind ``operation`` and extra fields to every log line in this context.

    Uses structlog contextvars, so concurrent diagnostics running in separate
    asyncio tasks keep their own bindings.
    """
    with structlog.contextvars.bound_contextvars(operation=operation, **fields):
        yield
