from __future__ import annotations

from typing import List, Optional, Protocol

from .entities import ChartData, ChartSource, DateRange, FetchOptions, HistoricalChartData


class ChartClient(Protocol):
    """Port defining the minimal contract for chart providers.

    Implementations map provider responses into domain entities and raise
    APIError (tagged with their source) on failure. A chart with zero entries
    is a valid result.
    """

    name: str
    source: ChartSource

    def get_chart(self, chart_type: str, options: Optional[FetchOptions] = None) -> ChartData:
        """Fetch one chart snapshot."""

    def get_available_charts(self) -> List[str]:
        """Return chart type identifiers this provider understands."""

    def get_historical_data(self, chart_type: str, date_range: DateRange) -> HistoricalChartData:
        """Return snapshots of a chart over the date range."""


class PersistentStore(Protocol):
    """String key/value store backing the chart cache. No atomicity is assumed."""

    def get_item(self, key: str) -> Optional[str]:
        """Return the stored value or None."""

    def set_item(self, key: str, value: str) -> None:
        """Store a value under key."""

    def remove_item(self, key: str) -> None:
        """Remove key if present."""

    def keys(self, prefix: str = "") -> List[str]:
        """List stored keys starting with prefix."""
