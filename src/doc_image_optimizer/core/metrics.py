"""Accumulation of optimization metrics for observability consumers."""

import copy
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import singledispatchmethod
from typing import Any, Callable, Deque, Dict, List, Optional

from .models import BatchStats, OptimizedImage, Technique
from .observability import MetricsCollector, PerformanceMetrics
from .protocols import MetricsExporterProtocol


def _empty_breakdown() -> Dict[str, Any]:
    return {"count": 0, "original_size": 0, "optimized_size": 0, "compression_ratio": 0.0}


def _add_to_breakdown(breakdown: Dict[str, Any], image: OptimizedImage) -> None:
    breakdown["count"] += 1
    breakdown["original_size"] += image.original_size
    breakdown["optimized_size"] += image.optimized_size
    if breakdown["original_size"]:
        breakdown["compression_ratio"] = (
            breakdown["original_size"] - breakdown["optimized_size"]
        ) / breakdown["original_size"]


@dataclass(frozen=True)
class BatchRecord:
    """Outcome of one finished batch, kept for period and trend queries."""

    timestamp: float
    total_images: int
    success_count: int
    degraded_count: int
    omitted_count: int
    original_size: int
    optimized_size: int
    cache_hits: int
    retry_count: int
    processing_time: float

    @property
    def compression_ratio(self) -> float:
        if not self.original_size:
            return 0.0
        return (self.original_size - self.optimized_size) / self.original_size


def _best_of(breakdowns: Dict[str, Dict[str, Any]]) -> Optional[str]:
    """Key of the breakdown with the highest compression ratio."""
    best = None
    best_ratio = 0.0
    for name, breakdown in breakdowns.items():
        if breakdown["compression_ratio"] > best_ratio:
            best, best_ratio = name, breakdown["compression_ratio"]
    return best


class MetricsRecorder:
    """
    Thread-safe accumulator of per-image and per-batch statistics.

    Recording never raises into the caller's control flow; ``snapshot``
    returns a deep copy so consumers cannot mutate the recorder's state.
    """

    def __init__(
        self,
        collector: Optional[MetricsCollector] = None,
        max_history: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        self._lock = threading.Lock()
        self._collector = collector or MetricsCollector()
        self._clock = clock
        self._state = self._initial_state()
        self._history: Deque[BatchRecord] = deque(maxlen=max_history)

    @property
    def collector(self) -> MetricsCollector:
        """Performance history of timed operations (batches, fetches)."""
        return self._collector

    @staticmethod
    def _initial_state() -> Dict[str, Any]:
        return {
            "total_images_processed": 0,
            "successful_optimizations": 0,
            "degraded_optimizations": 0,
            "passthrough_images": 0,
            "total_original_size": 0,
            "total_optimized_size": 0,
            "total_processing_time": 0.0,
            "psnr_sum": 0.0,
            "psnr_count": 0,
            "format_breakdown": {},
            "role_breakdown": {},
            "error_breakdown": {},
            "batches": {
                "total": 0,
                "completed": 0,
                "failed": 0,
                "aborted": 0,
                "cache_hits": 0,
                "omitted_images": 0,
                "retries": 0,
            },
        }

    @singledispatchmethod
    def record(self, stats) -> None:
        """Record an ``OptimizedImage`` or a ``BatchStats``."""
        raise TypeError(f"Cannot record metrics of type {type(stats).__name__}")

    @record.register
    def _(self, stats: OptimizedImage) -> None:
        with self._lock:
            state = self._state
            state["total_images_processed"] += 1
            state["total_original_size"] += stats.original_size
            state["total_optimized_size"] += stats.optimized_size
            state["total_processing_time"] += stats.processing_time
            if stats.degraded:
                state["degraded_optimizations"] += 1
            else:
                state["successful_optimizations"] += 1
            if stats.technique is Technique.PASSTHROUGH:
                state["passthrough_images"] += 1
            if stats.psnr is not None:
                state["psnr_sum"] += stats.psnr
                state["psnr_count"] += 1
            _add_to_breakdown(
                state["format_breakdown"].setdefault(stats.format, _empty_breakdown()), stats
            )
            _add_to_breakdown(
                state["role_breakdown"].setdefault(stats.role.value, _empty_breakdown()), stats
            )

    @record.register
    def _(self, stats: BatchStats) -> None:
        now = self._clock()
        with self._lock:
            batches = self._state["batches"]
            batches["total"] += 1
            batches["cache_hits"] += stats.cache_hits
            batches["omitted_images"] += stats.omitted_count
            batches["retries"] += stats.retry_count
            self._history.append(
                BatchRecord(
                    timestamp=now,
                    total_images=stats.total_images,
                    success_count=stats.success_count,
                    degraded_count=stats.degraded_count,
                    omitted_count=stats.omitted_count,
                    original_size=stats.total_original_size,
                    optimized_size=stats.total_optimized_size,
                    cache_hits=stats.cache_hits,
                    retry_count=stats.retry_count,
                    processing_time=stats.processing_time,
                )
            )
        self._collector.record_metric(
            PerformanceMetrics(
                operation="optimize_batch",
                start_time=now - stats.processing_time,
                end_time=now,
                success=stats.degraded_count == 0 and stats.omitted_count == 0,
                metadata={"total_images": stats.total_images},
            )
        )

    def record_status(self, status: str) -> None:
        """Count a finished batch by its status (completed, failed, aborted)."""
        with self._lock:
            batches = self._state["batches"]
            if status in batches:
                batches[status] += 1

    def record_error(self, category: str) -> None:
        with self._lock:
            errors = self._state["error_breakdown"]
            errors[category] = errors.get(category, 0) + 1

    def snapshot(self) -> Dict[str, Any]:
        """Read-only view of everything recorded so far."""
        with self._lock:
            state = copy.deepcopy(self._state)

        processed = state["total_images_processed"]
        original = state["total_original_size"]
        psnr_count = state.pop("psnr_count")
        psnr_sum = state.pop("psnr_sum")
        state["overall_compression_ratio"] = (
            (original - state["total_optimized_size"]) / original if original else 0.0
        )
        state["average_processing_time"] = (
            state["total_processing_time"] / processed if processed else 0.0
        )
        state["average_psnr"] = psnr_sum / psnr_count if psnr_count else None
        state["batch_performance"] = self._collector.get_summary("optimize_batch")
        state["fetch_performance"] = self._collector.get_summary("fetch_asset")
        state["timestamp"] = datetime.now(timezone.utc).isoformat()
        return state

    def history(self) -> List[BatchRecord]:
        with self._lock:
            return list(self._history)

    def metrics_for_period(self, hours: float = 24.0) -> Dict[str, Any]:
        """
        Aggregate the batches finished in the last ``hours``.

        Only the bounded batch history is consulted, so very old batches
        drop out once more than ``max_history`` have been recorded.
        """
        cutoff = self._clock() - hours * 3600
        records = [r for r in self.history() if r.timestamp >= cutoff]

        total_images = sum(r.total_images for r in records)
        successful = sum(r.success_count for r in records)
        original = sum(r.original_size for r in records)
        optimized = sum(r.optimized_size for r in records)
        processing_times = [r.processing_time for r in records]
        return {
            "period_hours": hours,
            "batches": len(records),
            "total_images": total_images,
            "successful_images": successful,
            "degraded_images": sum(r.degraded_count for r in records),
            "omitted_images": sum(r.omitted_count for r in records),
            "success_rate": successful / total_images if total_images else 0.0,
            "total_original_size": original,
            "total_optimized_size": optimized,
            "total_size_saved": original - optimized,
            "overall_compression_ratio": (original - optimized) / original if original else 0.0,
            "cache_hits": sum(r.cache_hits for r in records),
            "retries": sum(r.retry_count for r in records),
            "average_processing_time": (
                sum(processing_times) / len(processing_times) if processing_times else 0.0
            ),
            "max_processing_time": max(processing_times, default=0.0),
        }

    def effectiveness(self, trend_length: int = 10) -> Dict[str, Any]:
        """How much the optimizer saves, where it saves most, and the recent trend."""
        with self._lock:
            state = copy.deepcopy(self._state)
            recent = list(self._history)[-trend_length:] if trend_length > 0 else []

        processed = state["total_images_processed"]
        original = state["total_original_size"]
        saved = original - state["total_optimized_size"]
        return {
            "overall_compression_ratio": saved / original if original else 0.0,
            "total_size_saved": saved,
            "average_size_reduction": saved / processed if processed else 0.0,
            "best_format": _best_of(state["format_breakdown"]),
            "best_role": _best_of(state["role_breakdown"]),
            "trend": [
                {
                    "timestamp": datetime.fromtimestamp(r.timestamp, timezone.utc).isoformat(),
                    "compression_ratio": r.compression_ratio,
                    "processing_time": r.processing_time,
                }
                for r in recent
            ],
        }

    def monitoring_summary(self) -> Dict[str, Any]:
        """Flat, rounded figures for dashboards and health checks; rates are percentages."""
        with self._lock:
            state = copy.deepcopy(self._state)

        processed = state["total_images_processed"]
        original = state["total_original_size"]
        saved = original - state["total_optimized_size"]
        return {
            "total_images_processed": processed,
            "success_rate": (
                round(state["successful_optimizations"] / processed * 100, 2) if processed else 0.0
            ),
            "error_rate": (
                round(state["degraded_optimizations"] / processed * 100, 2) if processed else 0.0
            ),
            "compression_ratio": round(saved / original * 100, 2) if original else 0.0,
            "average_processing_time": (
                round(state["total_processing_time"] / processed, 3) if processed else 0.0
            ),
            "total_size_saved": saved,
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }

    def export(self, exporter: MetricsExporterProtocol) -> Dict[str, Any]:
        """Push the current snapshot to an observability exporter."""
        snapshot = self.snapshot()
        exporter.export(snapshot)
        return snapshot

    def reset(self) -> None:
        with self._lock:
            self._state = self._initial_state()
            self._history.clear()
        self._collector.clear_metrics()
