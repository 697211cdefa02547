"""Observability utilities: structured logging context and performance metrics."""

import dataclasses
import logging
import os
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional

COMPONENT_PREFIX = "doc-image-optimizer"


@dataclass(frozen=True)
class LogContext:
    """
    Fields attached to every message logged on behalf of one batch job.

    The correlation id is the job id, so every line of a job can be grepped
    together; derived contexts keep it.
    """

    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    operation: str = ""
    component: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def for_job(cls, job_id: str, component: str, **metadata) -> "LogContext":
        return cls(correlation_id=job_id, component=component, metadata=metadata)

    def with_operation(self, operation: str) -> "LogContext":
        return dataclasses.replace(self, operation=operation)

    def with_metadata(self, **kwargs) -> "LogContext":
        return dataclasses.replace(self, metadata={**self.metadata, **kwargs})


def render_message(
    message: str, context: Optional[LogContext], fields: Mapping[str, Any]
) -> str:
    """``[operation] [correlation] message (key=value, ...)``"""
    parts = []
    if context is not None:
        if context.operation:
            parts.append(f"[{context.operation}]")
        parts.append(f"[{context.correlation_id}]")
        fields = {**context.metadata, **fields}
    parts.append(message)
    rendered = " ".join(parts)
    if fields:
        rendered += " (" + ", ".join(f"{k}={v}" for k, v in fields.items()) + ")"
    return rendered


class StructuredLogger:
    """Logger that renders a ``LogContext`` and keyword fields into each line."""

    def __init__(self, name: str, level: int = logging.INFO):
        self._logger = logging.getLogger(name)
        self._logger.setLevel(level)

        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter("%(asctime)s | %(name)s | %(levelname)-8s | %(message)s")
            )
            self._logger.addHandler(handler)
        self._logger.propagate = False

    @property
    def name(self) -> str:
        return self._logger.name

    def log(self, level: int, message: str, context: Optional[LogContext] = None, **fields):
        if self._logger.isEnabledFor(level):
            self._logger.log(level, render_message(message, context, fields))

    def debug(self, message: str, context: Optional[LogContext] = None, **fields):
        self.log(logging.DEBUG, message, context, **fields)

    def info(self, message: str, context: Optional[LogContext] = None, **fields):
        self.log(logging.INFO, message, context, **fields)

    def warning(self, message: str, context: Optional[LogContext] = None, **fields):
        self.log(logging.WARNING, message, context, **fields)

    def error(self, message: str, context: Optional[LogContext] = None, **fields):
        self.log(logging.ERROR, message, context, **fields)


def create_logger(component: str, level: Optional[str] = None) -> StructuredLogger:
    """
    Structured logger for one optimizer component.

    The level defaults to the ``LOG_LEVEL`` environment variable, then INFO.
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    return StructuredLogger(
        f"{COMPONENT_PREFIX}.{component}", getattr(logging, level_name, logging.INFO)
    )


@dataclass
class PerformanceMetrics:
    """Timing of one operation (a batch, a fetch)."""

    operation: str
    start_time: float
    end_time: float
    success: bool
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000


class MetricsCollector:
    """Thread-safe, bounded history of operation timings."""

    def __init__(self, max_history: int = 1000):
        self._metrics: Deque[PerformanceMetrics] = deque(maxlen=max_history)
        self._lock = threading.Lock()

    def record_metric(self, metric: PerformanceMetrics):
        with self._lock:
            self._metrics.append(metric)

    def get_metrics(self, operation: Optional[str] = None) -> List[PerformanceMetrics]:
        with self._lock:
            metrics = list(self._metrics)
        if operation:
            metrics = [m for m in metrics if m.operation == operation]
        return metrics

    def get_summary(self, operation: Optional[str] = None) -> Dict[str, Any]:
        """Counts and duration statistics; empty when nothing was recorded."""
        metrics = self.get_metrics(operation)
        if not metrics:
            return {}

        durations = [m.duration for m in metrics]
        succeeded = sum(1 for m in metrics if m.success)
        return {
            "total_operations": len(metrics),
            "successful_operations": succeeded,
            "failed_operations": len(metrics) - succeeded,
            "success_rate": succeeded / len(metrics),
            "avg_duration": sum(durations) / len(durations),
            "min_duration": min(durations),
            "max_duration": max(durations),
            "total_duration": sum(durations),
        }

    def clear_metrics(self):
        with self._lock:
            self._metrics.clear()


def timed_operation(
    operation_name: str,
    logger: Optional[StructuredLogger] = None,
    metrics_collector: Optional[MetricsCollector] = None,
    context: Optional[LogContext] = None,
):
    """Time each call of the wrapped function, log it and record it in the collector."""

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            operation_context = (context or LogContext()).with_operation(operation_name)
            if logger:
                logger.debug(f"Starting {operation_name}", operation_context)

            start_time = time.time()
            succeeded = False
            error_message = None
            try:
                result = func(*args, **kwargs)
                succeeded = True
                return result
            except Exception as e:
                error_message = str(e)
                raise
            finally:
                end_time = time.time()
                if logger:
                    logger.debug(
                        f"{'Completed' if succeeded else 'Failed'} {operation_name}",
                        operation_context,
                        duration_ms=round((end_time - start_time) * 1000, 2),
                    )
                if metrics_collector:
                    metrics_collector.record_metric(
                        PerformanceMetrics(
                            operation=operation_name,
                            start_time=start_time,
                            end_time=end_time,
                            success=succeeded,
                            error_message=error_message,
                        )
                    )

        return wrapper

    return decorator
