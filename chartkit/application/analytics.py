"""Trend comparison and entry helpers for chart snapshots."""

from typing import Any, Iterable, List, Optional

from chartkit.domain.entities import ChartAnalytics, ChartData, ChartEntry, Trend, TrendData

TOP_MOVERS_LIMIT = 10
MISSING_PEAK = 999

SORT_FIELDS = ("rank", "title", "artist", "weeks", "peakPosition")


def calculate_trends(current_chart: ChartData, previous_chart: ChartData) -> List[TrendData]:
    """Compare every current entry with the same title+artist in the previous chart.

    position_change is previous rank minus current rank, so climbing is positive.
    """
    previous_by_identity = {}
    for entry in previous_chart.entries:
        previous_by_identity.setdefault((entry.title, entry.artist), entry)

    trends = []
    for entry in current_chart.entries:
        previous = previous_by_identity.get((entry.title, entry.artist))
        trend = Trend.NEW
        position_change = 0

        if previous is not None:
            position_change = previous.rank - entry.rank
            if position_change > 0:
                trend = Trend.UP
            elif position_change < 0:
                trend = Trend.DOWN
            else:
                trend = Trend.STABLE

        trends.append(TrendData(
            entry=entry,
            trend=trend,
            position_change=position_change,
            weekly_data=[(entry.chart_date, entry.rank)],
        ))

    return trends


def generate_chart_analytics(current_chart: ChartData,
                             previous_chart: Optional[ChartData] = None) -> ChartAnalytics:
    """Summarize new, dropped and moving entries between two snapshots."""
    analytics = ChartAnalytics(total_entries=len(current_chart.entries))

    if previous_chart is None:
        analytics.new_entries = len(current_chart.entries)
        return analytics

    trends = calculate_trends(current_chart, previous_chart)
    analytics.trends = trends
    analytics.new_entries = sum(1 for t in trends if t.trend is Trend.NEW)
    analytics.dropped_entries = len(previous_chart.entries) - (
        len(current_chart.entries) - analytics.new_entries
    )

    climbers = [t for t in trends if t.trend is Trend.UP]
    climbers.sort(key=lambda t: t.position_change, reverse=True)
    fallers = [t for t in trends if t.trend is Trend.DOWN]
    fallers.sort(key=lambda t: t.position_change)

    analytics.climbers = climbers[:TOP_MOVERS_LIMIT]
    analytics.fallers = fallers[:TOP_MOVERS_LIMIT]
    return analytics


def filter_chart_entries(entries: Iterable[ChartEntry],
                         artist: Optional[str] = None,
                         min_weeks: Optional[int] = None,
                         max_weeks: Optional[int] = None,
                         peak_position: Optional[int] = None) -> List[ChartEntry]:
    """Filter entries. Entries missing weeks or peak data pass those filters."""
    result = []
    for entry in entries:
        if artist and artist.lower() not in entry.artist.lower():
            continue
        if min_weeks and entry.weeks_on_chart and entry.weeks_on_chart < min_weeks:
            continue
        if max_weeks and entry.weeks_on_chart and entry.weeks_on_chart > max_weeks:
            continue
        if peak_position and entry.peak_position and entry.peak_position > peak_position:
            continue
        result.append(entry)
    return result


def _sort_value(entry: ChartEntry, sort_by: str) -> Any:
    if sort_by == "title":
        return entry.title.lower()
    if sort_by == "artist":
        return entry.artist.lower()
    if sort_by == "weeks":
        return entry.weeks_on_chart or 0
    if sort_by == "peakPosition":
        return entry.peak_position or MISSING_PEAK
    return entry.rank


def sort_chart_entries(entries: Iterable[ChartEntry], sort_by: str = "rank",
                       order: str = "asc") -> List[ChartEntry]:
    """Return a sorted copy of entries. Unknown sort fields sort by rank."""
    return sorted(entries, key=lambda e: _sort_value(e, sort_by), reverse=(order == "desc"))


def validate_chart_data(data: Any) -> bool:
    """Check that an object has the shape of a ChartData with well-formed entries."""
    if not isinstance(data, ChartData):
        return False
    if not isinstance(data.chart_type, str) or not isinstance(data.total_entries, int):
        return False
    return all(
        isinstance(e.rank, int) and isinstance(e.title, str) and isinstance(e.artist, str)
        for e in data.entries
    )
