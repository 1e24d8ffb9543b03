import logging
from typing import Dict, List, Optional

from chartkit.domain.entities import (
    ChartData, ChartEntry, ChartSource, DateRange, FetchOptions, HistoricalChartData, coerce_metadata,
)
from chartkit.domain.errors import APIError, RateLimited
from chartkit.domain.normalization import utc_now

logger = logging.getLogger(__name__)

YANDEX_SOURCE = ChartSource.custom("yandex")

# chart type -> chart option understood by Client.chart()
CHART_MAP: Dict[str, str] = {
    'world': 'world',
    'russia': 'russia',
}


class YandexChartClient:
    """Yandex Music chart adapter.

    Wraps the yandex-music client. Chart positions carry a ``progress``
    marker ('new', 'up', 'down', 'same') and a signed ``shift`` relative to
    the previous chart.
    """

    name = "Yandex Music"
    source = YANDEX_SOURCE

    def __init__(self, oauth_token: Optional[str] = None, client=None):
        """Initialize the client.

        Args:
            oauth_token: Yandex Music OAuth token; anonymous access is used if omitted
            client: Pre-built yandex_music.Client, mainly for tests
        """
        if client is not None:
            self._client = client
            return

        from yandex_music import Client
        try:
            self._client = Client(oauth_token).init()
        except Exception as e:
            raise APIError(f"Failed to initialize Yandex Music client: {e}", 500, YANDEX_SOURCE) from e

    def get_available_charts(self) -> List[str]:
        return list(CHART_MAP)

    def get_chart(self, chart_type: str, options: Optional[FetchOptions] = None) -> ChartData:
        """Fetch the current chart. Yandex keeps no archive, so options.date only labels the result."""
        options = options or FetchOptions()
        option = CHART_MAP.get(chart_type)
        if option is None:
            raise APIError(f"Unknown chart type: {chart_type}", 400, YANDEX_SOURCE)

        try:
            chart_info = self._client.chart(option)
        except Exception as e:
            if "429" in str(e) or "Too many requests" in str(e):
                raise RateLimited(YANDEX_SOURCE) from e
            raise APIError(f"Failed to fetch Yandex chart {chart_type}: {e}", 500, YANDEX_SOURCE) from e

        chart = getattr(chart_info, 'chart', None)
        date = options.date or utc_now()
        entries = []
        for index, chart_track in enumerate(getattr(chart, 'tracks', None) or []):
            entry = self._to_entry(chart_track, index, date)
            if entry is not None:
                entries.append(entry)

        if options.limit:
            entries = entries[:options.limit]

        return ChartData(
            chart_type=chart_type,
            date=date,
            entries=tuple(entries),
            source=YANDEX_SOURCE,
            total_entries=len(entries),
            metadata=coerce_metadata({
                'title': getattr(chart_info, 'title', None),
                'menuTitle': getattr(getattr(chart_info, 'menu', None), 'title', None),
            }),
        )

    def get_historical_data(self, chart_type: str, date_range: DateRange) -> HistoricalChartData:
        current = self.get_chart(chart_type, FetchOptions(date=date_range.end))
        return HistoricalChartData(
            chart_type=chart_type,
            date_range=date_range,
            data=[current],
            source=YANDEX_SOURCE,
        )

    @staticmethod
    def _to_entry(chart_track, index: int, date) -> Optional[ChartEntry]:
        track = getattr(chart_track, 'track', None)
        if track is None:
            return None
        position = getattr(chart_track, 'chart', None)

        rank = getattr(position, 'position', None) or (index + 1)
        progress = getattr(position, 'progress', None)
        shift = getattr(position, 'shift', None)

        # A positive shift means the track climbed since last week
        last_week = None
        if progress != 'new' and shift is not None:
            last_week = rank + shift

        artists = [a.name for a in (getattr(track, 'artists', None) or []) if getattr(a, 'name', None)]
        albums = getattr(track, 'albums', None) or []
        album = getattr(albums[0], 'title', None) if albums else None

        return ChartEntry(
            rank=rank,
            title=getattr(track, 'title', '') or '',
            artist=", ".join(artists),
            album=album,
            last_week=last_week,
            chart_date=date,
            source=YANDEX_SOURCE,
            metadata=coerce_metadata({
                'trackId': str(getattr(track, 'id', '')),
                'progress': progress,
                'listeners': getattr(position, 'listeners', None),
                'durationMs': getattr(track, 'duration_ms', None),
            }),
        )
