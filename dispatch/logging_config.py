"""Structured logging configuration with structlog.

Every log line is a snake_case event name plus keyword context. Request IDs
flow from the ``x-request-id`` header (or a generated UUID) through a context
variable, so log lines emitted deep inside the matching or settlement code
can be correlated with the HTTP request that caused them.
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
import sys
import time
from functools import wraps
from typing import Any, Callable, Optional, TypeVar
from uuid import uuid4

import structlog
from structlog.types import Processor

from dispatch.config import get_settings

settings = get_settings()

request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)
# Caller identity asserted by the gateway, e.g. {"technician_id": "..."}
actor_var: contextvars.ContextVar[dict[str, str]] = contextvars.ContextVar("actor", default={})

ACTOR_HEADERS = {
    b"x-technician-id": "technician_id",
    b"x-customer-id": "customer_id",
    b"x-actor-role": "actor_role",
}


def get_request_id() -> Optional[str]:
    """Get current request ID from context."""
    return request_id_var.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context, generating one if not provided."""
    if request_id is None:
        request_id = str(uuid4())
    request_id_var.set(request_id)
    return request_id


def add_request_context(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add the request ID and caller identity to a log event.

    Explicit keyword context wins over the ambient actor.
    """
    request_id = get_request_id()
    if request_id:
        event_dict["request_id"] = request_id
    for key, value in actor_var.get().items():
        event_dict.setdefault(key, value)
    return event_dict


def add_app_context(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add application context to log event."""
    event_dict["app"] = settings.app_name
    event_dict["env"] = settings.app_env
    return event_dict


def setup_logging() -> None:
    """Configure structured logging for the application."""
    use_json = settings.app_env != "development" or not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        add_app_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if use_json:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        shared_processors.append(structlog.dev.set_exc_info)
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))

    # Suppress noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger by name."""
    return structlog.get_logger(name)


F = TypeVar("F", bound=Callable[..., Any])


def log_execution_time(operation: str) -> Callable[[F], F]:
    """Decorator logging duration and outcome of an async unit of work.

    Args:
        operation: Name of the operation being timed

    Usage:
        @log_execution_time("job_fan_out")
        async def broadcast_new_job(...):
            ...
    """

    def decorator(func: F) -> F:
        logger = get_logger(func.__module__)

        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"log_execution_time expects a coroutine function, got {func!r}")

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                elapsed_ms = (time.perf_counter() - start_time) * 1000
                logger.warning(
                    f"{operation}_failed",
                    operation=operation,
                    duration_ms=round(elapsed_ms, 2),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            logger.debug(
                f"{operation}_completed",
                operation=operation,
                duration_ms=round(elapsed_ms, 2),
            )
            metrics.record_timing(operation, elapsed_ms)
            return result

        return wrapper  # type: ignore[return-value]

    return decorator


class LoggingMiddleware:
    """ASGI middleware for request logging and timing."""

    def __init__(self, app):
        self.app = app
        self.logger = get_logger("http")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "/")

        headers = dict(scope.get("headers", []))
        request_id = headers.get(b"x-request-id", b"").decode() or None
        request_id = set_request_id(request_id)
        actor_var.set(
            {
                key: headers[header].decode()
                for header, key in ACTOR_HEADERS.items()
                if headers.get(header)
            }
        )

        start_time = time.perf_counter()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 500)
                response_headers = list(message.get("headers", []))
                response_headers.append((b"x-request-id", request_id.encode()))
                message["headers"] = response_headers
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            log = self.logger.debug if path == "/health" else self.logger.info
            log(
                "http_request",
                method=method,
                path=path,
                status=status_code,
                duration_ms=round(elapsed_ms, 2),
            )


class MetricsTracker:
    """In-process counters and timings for dispatch outcomes."""

    def __init__(self):
        self._counters: dict[str, int] = {}
        self._timings: dict[str, list[float]] = {}

    def increment(self, metric: str, value: int = 1) -> None:
        """Increment a counter metric."""
        self._counters[metric] = self._counters.get(metric, 0) + value

    def record_timing(self, metric: str, value_ms: float) -> None:
        """Record a timing metric in milliseconds, keeping the last 1000 samples."""
        samples = self._timings.setdefault(metric, [])
        samples.append(value_ms)
        if len(samples) > 1000:
            del samples[:-1000]

    def get_counter(self, metric: str) -> int:
        """Get counter value."""
        return self._counters.get(metric, 0)

    def get_timing_stats(self, metric: str) -> Optional[dict[str, float]]:
        """Get timing statistics."""
        values = self._timings.get(metric, [])
        if not values:
            return None
        return {
            "count": len(values),
            "min_ms": round(min(values), 2),
            "max_ms": round(max(values), 2),
            "avg_ms": round(sum(values) / len(values), 2),
        }

    def get_all_metrics(self) -> dict[str, Any]:
        """Get all metrics."""
        return {
            "counters": self._counters.copy(),
            "timings": {metric: self.get_timing_stats(metric) for metric in self._timings},
        }

    def reset(self) -> None:
        self._counters.clear()
        self._timings.clear()


metrics = MetricsTracker()
