"""
Structured logging configuration with request and checkout correlation.

This module configures structlog on top of the standard library logger.
Every event carries the request id set by the HTTP middleware, and gateway
code can bind order/payment/gateway identifiers for the duration of an
operation so that provider failures are traceable from logs alone.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor

from zambezi.core.config import get_settings

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")


def add_request_id(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Add request ID from context to log event.

    Args:
        logger: Logger instance
        method_name: Log method name
        event_dict: Event dictionary to modify

    Returns:
        Modified event dictionary with request_id
    """
    request_id = request_id_ctx.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def add_timestamp(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add ISO format UTC timestamp to log event."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def add_logger_name(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add logger name to event dictionary."""
    event_dict["logger"] = logger.name
    return event_dict


def configure_logging() -> None:
    """
    Configure structured logging.

    Console rendering is used in development, JSON everywhere else so that
    log shippers can index checkout context fields.
    """
    settings = get_settings()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_timestamp,
        add_logger_name,
        add_request_id,
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

    # Third-party libraries
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
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


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set request ID in context for correlation.

    Args:
        request_id: Optional request ID, generates UUID if not provided

    Returns:
        Request ID that was set
    """
    if request_id is None:
        request_id = str(uuid4())
    request_id_ctx.set(request_id)
    return request_id


def get_request_id() -> str:
    return request_id_ctx.get()


@contextmanager
def checkout_context(**identifiers: Any) -> Iterator[None]:
    """
    Bind checkout identifiers to every log event inside the block.

    None values are dropped so callers can pass optional ids directly.

    Example:
        >>> with checkout_context(gateway="stripe", order_id=42):
        ...     logger.info("Creating payment intent")
    """
    bound = {key: value for key, value in identifiers.items() if value is not None}
    tokens = structlog.contextvars.bind_contextvars(**bound)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def clear_context() -> None:
    """
    Clear all context variables.

    Called at the end of request processing to prevent context leakage
    between requests.
    """
    request_id_ctx.set("")
    structlog.contextvars.clear_contextvars()


class PerformanceLogger:
    """
    Context manager for performance logging.

    Logs execution time of code blocks with structured context. Slow
    provider round trips (over one second) are logged as warnings.
    """

    slow_threshold_ms = 1000

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
            log_method = (
                self.logger.warning
                if duration_ms > self.slow_threshold_ms
                else self.logger.info
            )
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

    Example:
        >>> logger = get_logger(__name__)
        >>> with log_performance(logger, "paypal.capture_order", order_id=42):
        ...     await client.capture_order(paypal_order_id)
    """
    return PerformanceLogger(logger, operation, **context)
