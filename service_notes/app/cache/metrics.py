"""
Latency-based hit/miss estimation for cache-fronted operations.

The Redis client does not report whether a read-through call was served from
cache, so the estimator times each call and classifies it: faster than
``hit_threshold_ms`` counts as a hit, anything else as a miss. The numbers are
diagnostic only and can misclassify slow hits or fast misses under load.
"""

import functools
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TYPE_CHECKING

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


HIT = "hit"
MISS = "miss"


@dataclass
class OperationCounters:
    """Counters for one logical operation."""
    hits: int = 0
    misses: int = 0
    total_time_ms: float = 0.0
    evictions: int = 0
    eviction_time_ms: float = 0.0
    failures: int = 0
    failure_time_ms: float = 0.0

    @property
    def classified_calls(self) -> int:
        return self.hits + self.misses


class CacheMetricsEstimator:
    """Per-operation hit/miss and latency counters."""

    def __init__(
        self,
        hit_threshold_ms: float = 5.0,
        *,
        collector: Optional["MetricsCollector"] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.hit_threshold_ms = hit_threshold_ms
        self.collector = collector
        self.logger = get_logger("notes.cache.metrics")
        self._clock = clock or time.perf_counter
        self._counters: Dict[str, OperationCounters] = {}
        # Guards counter updates only; never held while a wrapped call runs
        self._lock = threading.Lock()

    def _elapsed_ms(self, start: float) -> float:
        return (self._clock() - start) * 1000.0

    def _counters_for(self, operation: str) -> OperationCounters:
        counters = self._counters.get(operation)
        if counters is None:
            counters = self._counters.setdefault(operation, OperationCounters())
        return counters

    async def track_read(self, operation: str, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run a read-through call and classify it as a hit or a miss."""
        start = self._clock()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            elapsed_ms = self._elapsed_ms(start)
            self.record_failure(operation, elapsed_ms)
            self.logger.error("Error in cached operation", operation=operation, elapsed_ms=elapsed_ms, error=str(e))
            raise

        self.record_read(operation, self._elapsed_ms(start))
        return result

    async def track_evict(self, operation: str, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run an evict-triggering call and record its latency."""
        start = self._clock()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            elapsed_ms = self._elapsed_ms(start)
            self.record_failure(operation, elapsed_ms)
            self.logger.error("Error in cache evict operation", operation=operation, elapsed_ms=elapsed_ms, error=str(e))
            raise

        self.record_evict(operation, self._elapsed_ms(start))
        return result

    def record_read(self, operation: str, elapsed_ms: float) -> str:
        """Count one completed read; returns the classification."""
        outcome = HIT if elapsed_ms < self.hit_threshold_ms else MISS

        with self._lock:
            counters = self._counters_for(operation)
            if outcome == HIT:
                counters.hits += 1
            else:
                counters.misses += 1
            counters.total_time_ms += elapsed_ms

        self.logger.debug("Cache read classified", operation=operation, outcome=outcome, elapsed_ms=round(elapsed_ms, 3))
        self._export(
            "cache_hits_total" if outcome == HIT else "cache_misses_total",
            operation,
            elapsed_ms,
            kind="read",
        )
        return outcome

    def record_evict(self, operation: str, elapsed_ms: float) -> None:
        """Count one completed evict-triggering call."""
        with self._lock:
            counters = self._counters_for(operation)
            counters.evictions += 1
            counters.eviction_time_ms += elapsed_ms

        self.logger.debug("Cache evict", operation=operation, elapsed_ms=round(elapsed_ms, 3))
        self._export("cache_evictions_total", operation, elapsed_ms, kind="evict")

    def record_failure(self, operation: str, elapsed_ms: float) -> None:
        """Count a failed call; failures never enter hit-rate denominators."""
        with self._lock:
            counters = self._counters_for(operation)
            counters.failures += 1
            counters.failure_time_ms += elapsed_ms

    def _export(self, counter_name: str, operation: str, elapsed_ms: float, kind: str) -> None:
        if self.collector is None:
            return

        try:
            self.collector.increment_counter(counter_name, operation=operation)
            self.collector.observe_histogram(
                "cache_operation_duration_seconds",
                elapsed_ms / 1000.0,
                operation=operation,
                kind=kind,
            )
        except Exception as exc:  # pragma: no cover
            self.logger.debug("Failed to export cache metrics", error=str(exc))

    def hit_rate(self, operation: str) -> float:
        """Percentage of classified calls that were hits; 0.0 when none recorded."""
        counters = self._counters.get(operation)
        if counters is None or counters.classified_calls == 0:
            return 0.0
        return counters.hits / counters.classified_calls * 100

    def average_time(self, operation: str) -> float:
        """Mean latency in milliseconds over classified calls; 0.0 when none recorded."""
        counters = self._counters.get(operation)
        if counters is None or counters.classified_calls == 0:
            return 0.0
        return counters.total_time_ms / counters.classified_calls

    def all_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every operation with at least one classified call."""
        metrics: Dict[str, Dict[str, Any]] = {}
        for operation, counters in list(self._counters.items()):
            if counters.classified_calls == 0:
                continue
            metrics[operation] = {
                "hits": counters.hits,
                "misses": counters.misses,
                "hit_rate": self.hit_rate(operation),
                "average_time_ms": self.average_time(operation),
            }
        return metrics

    def eviction_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of evict-triggering operations."""
        metrics: Dict[str, Dict[str, Any]] = {}
        for operation, counters in list(self._counters.items()):
            if counters.evictions == 0:
                continue
            metrics[operation] = {
                "evictions": counters.evictions,
                "average_time_ms": counters.eviction_time_ms / counters.evictions,
            }
        return metrics

    def failure_counts(self) -> Dict[str, int]:
        return {
            operation: counters.failures
            for operation, counters in list(self._counters.items())
            if counters.failures
        }

    def reset(self) -> None:
        """Clear all counters for all operations."""
        with self._lock:
            self._counters = {}
        self.logger.info("Cache metrics reset")


def cacheable(operation: str):
    """Time a read-through method through ``self.cache_metrics``."""
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            estimator = getattr(self, "cache_metrics", None)
            if estimator is None:
                return await func(self, *args, **kwargs)
            return await estimator.track_read(operation, func, self, *args, **kwargs)

        return wrapper
    return decorator


def cache_evict(operation: str):
    """Time an evict-triggering method through ``self.cache_metrics``."""
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            estimator = getattr(self, "cache_metrics", None)
            if estimator is None:
                return await func(self, *args, **kwargs)
            return await estimator.track_evict(operation, func, self, *args, **kwargs)

        return wrapper
    return decorator
