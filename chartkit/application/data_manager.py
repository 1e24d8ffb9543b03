import logging
from datetime import datetime
from typing import Any, Dict, Optional

from chartkit.application.cache import CacheOptions, ChartCache
from chartkit.domain.entities import ChartData, ChartSource
from chartkit.domain.errors import CacheError
from chartkit.domain.normalization import day_key, utc_now
from chartkit.domain.ports import PersistentStore

logger = logging.getLogger(__name__)


def generate_cache_key(chart_type: str, source: ChartSource, date: datetime) -> str:
    """Deterministic cache key: <source>-<chart_type>-<YYYY-MM-DD> (UTC day)."""
    return f"{source.tag}-{chart_type}-{day_key(date)}"


class ChartDataManager:
    """Routes chart snapshots in and out of the cache by (source, chart type, day)."""

    def __init__(self, options: Optional[CacheOptions] = None,
                 store: Optional[PersistentStore] = None,
                 cache: Optional[ChartCache] = None):
        self.cache = cache if cache is not None else ChartCache(options, store=store)

    def cache_chart(self, chart_data: ChartData) -> None:
        key = generate_cache_key(chart_data.chart_type, chart_data.source, chart_data.date)
        try:
            self.cache.set(key, chart_data)
        except Exception as e:
            raise CacheError(f"Failed to cache chart data: {e}") from e

    def get_cached_chart(self, chart_type: str, source: ChartSource,
                         date: Optional[datetime] = None) -> Optional[ChartData]:
        try:
            key = generate_cache_key(chart_type, source, date or utc_now())
            return self.cache.get(key)
        except Exception as e:
            logger.warning(f"Failed to get cached chart: {e}")
            return None

    def clear_cache(self, chart_type: Optional[str] = None,
                    source: Optional[ChartSource] = None) -> None:
        try:
            if chart_type and source:
                self.cache.clear_by_pattern(f"{source.tag}-{chart_type}-")
            else:
                self.cache.clear()
        except Exception as e:
            raise CacheError(f"Failed to clear cache: {e}") from e

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_stats()
