"""
Structured logging configuration with edit-session correlation.

This module provides centralized structlog configuration with console output
in development and JSON output elsewhere, order and session ID correlation
through context variables, and a performance logging context manager.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Optional

import structlog
from structlog.types import EventDict, Processor

from order_pricing.core.config import get_settings


# Context variables for edit-session correlation
session_id_ctx: ContextVar[str] = ContextVar("session_id", default="")
order_id_ctx: ContextVar[Optional[str]] = ContextVar("order_id", default=None)


def add_session_id(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Add edit session ID from context to log event.

    Args:
        logger: Logger instance
        method_name: Log method name
        event_dict: Event dictionary to modify

    Returns:
        Modified event dictionary with session_id
    """
    session_id = session_id_ctx.get()
    if session_id:
        event_dict["session_id"] = session_id
    return event_dict


def add_order_id(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Add order ID from context to log event.

    Args:
        logger: Logger instance
        method_name: Log method name
        event_dict: Event dictionary to modify

    Returns:
        Modified event dictionary with order_id
    """
    order_id = order_id_ctx.get()
    if order_id and "order_id" not in event_dict:
        event_dict["order_id"] = order_id
    return event_dict


def add_timestamp(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add ISO format timestamp to log event."""
    from datetime import datetime, timezone

    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def configure_logging() -> None:
    """
    Configure structured logging.

    Sets up structlog with console rendering for development and JSON
    rendering for staging and production, based on application settings.
    """
    settings = get_settings()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_timestamp,
        add_session_id,
        add_order_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.is_development:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)


@contextmanager
def session_context(session_id: str, order_id: Optional[str] = None) -> Iterator[None]:
    """
    Bind edit session and order IDs to log events inside the block.

    Previous values are restored on exit, so nested or interleaved
    sessions never leak their IDs into each other's logs. Tasks created
    inside the block inherit the IDs.

    Args:
        session_id: Edit session ID
        order_id: ID of the order being edited, None for a new order

    Example:
        >>> with session_context(session.session_id, session.order_id):
        ...     session.pricing.set_quantity(item, 2)
    """
    session_token = session_id_ctx.set(session_id)
    order_token = order_id_ctx.set(order_id)
    try:
        yield
    finally:
        order_id_ctx.reset(order_token)
        session_id_ctx.reset(session_token)


class PerformanceLogger:
    """
    Context manager for performance logging.

    Logs execution time of code blocks with structured context.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.context = context
        self.start_time: Optional[float] = None

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        self.logger.debug(
            "Operation started",
            operation=self.operation,
            **self.context,
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return

        duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type is not None:
            self.logger.error(
                "Operation failed",
                operation=self.operation,
                duration_ms=round(duration_ms, 2),
                error_type=exc_type.__name__,
                **self.context,
            )
        else:
            log_method = self.logger.warning if duration_ms > 500 else self.logger.debug
            log_method(
                "Operation completed",
                operation=self.operation,
                duration_ms=round(duration_ms, 2),
                **self.context,
            )


def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    **context: Any,
) -> PerformanceLogger:
    """
    Create performance logger context manager.

    Args:
        logger: Logger instance to use
        operation: Operation name for logging
        **context: Additional context to include in logs

    Returns:
        PerformanceLogger context manager

    Example:
        >>> logger = get_logger(__name__)
        >>> with log_performance(logger, "reconstruct_order", order_id="SO-1"):
        ...     reconstruct_order(record)
    """
    return PerformanceLogger(logger, operation, **context)
