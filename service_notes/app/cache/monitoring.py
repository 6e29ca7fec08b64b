"""
Administrative view over the notes cache.
"""

from typing import Any, Dict, TYPE_CHECKING

from shared.errors import ValidationError
from shared.logging import get_logger
from .keys import CacheNamespace, namespace_pattern
from .metrics import CacheMetricsEstimator
from .redis_store import RedisCacheStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..notes.service import NoteService


class CacheMonitoringService:
    """Stats, metrics and manual flushes for the cached note views."""

    def __init__(
        self,
        cache_store: RedisCacheStore,
        cache_metrics: CacheMetricsEstimator,
        note_service: "NoteService",
    ):
        self.cache_store = cache_store
        self.cache_metrics = cache_metrics
        self.note_service = note_service
        self.logger = get_logger("notes.cache.monitoring")

    async def get_cache_stats(self) -> Dict[str, Any]:
        """Key counts per namespace plus the total key count."""
        stats: Dict[str, Any] = {}
        for namespace in CacheNamespace:
            keys = await self.cache_store.list_keys(namespace_pattern(namespace))
            stats[f"{namespace.value}_cache_size"] = len(keys)

        stats["total_keys"] = len(await self.cache_store.list_keys("*"))
        return stats

    def get_performance_metrics(self) -> Dict[str, Dict[str, Any]]:
        return self.cache_metrics.all_metrics()

    async def get_dashboard(self) -> Dict[str, Any]:
        """Combined stats and estimator output."""
        return {
            "redis_stats": await self.get_cache_stats(),
            "performance_metrics": self.cache_metrics.all_metrics(),
            "eviction_metrics": self.cache_metrics.eviction_metrics(),
            "failures": self.cache_metrics.failure_counts(),
            "hit_threshold_ms": self.cache_metrics.hit_threshold_ms,
            "circuit_breaker": self.cache_store.breaker.get_state(),
        }

    def reset_metrics(self) -> None:
        self.cache_metrics.reset()

    async def clear_cache(self, cache_name: str) -> int:
        """Drop every entry of one namespace; returns the number of keys removed."""
        try:
            namespace = CacheNamespace(cache_name)
        except ValueError:
            raise ValidationError(
                f"Unknown cache '{cache_name}'",
                {"cache_name": cache_name, "allowed": [ns.value for ns in CacheNamespace]},
            )

        removed = await self.cache_store.evict_all(namespace)
        self.logger.info("Cleared cache", cache_name=cache_name, keys_count=removed)
        return removed

    async def clear_all_caches(self) -> Dict[str, int]:
        return {namespace.value: await self.clear_cache(namespace.value) for namespace in CacheNamespace}

    async def warm_up_user_cache(self, user_id: int) -> Dict[str, Any]:
        """Pre-load a user's own and shared note lists through the note service."""
        owned = await self.note_service.get_user_notes(user_id)
        shared = await self.note_service.get_shared_notes(user_id)

        summary = {
            "user_id": user_id,
            "warmed": {
                CacheNamespace.USER_NOTES.value: len(owned),
                CacheNamespace.SHARED_NOTES.value: len(shared),
            },
        }
        self.logger.info("Cache warm completed", **summary)
        return summary
