"""Billboard chart client.

Charts are read from the public chart pages on billboard.com:
  https://www.billboard.com/charts/<chart>/<YYYY-MM-DD>/
Each chart row is a ``ul.o-chart-results-list-row``; the first numeric label
in the row is the rank and the last three are last week, peak and weeks on
chart.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import requests
from bs4 import BeautifulSoup

from chartkit.domain.entities import (
    ChartData, ChartEntry, ChartSource, DateRange, FetchOptions, HistoricalChartData, coerce_metadata,
)
from chartkit.domain.errors import APIError
from chartkit.domain.normalization import format_date, utc_now

logger = logging.getLogger(__name__)

CHART_URL_TEMPLATE = "https://www.billboard.com/charts/{chart}/{date}"
REQUEST_TIMEOUT = 15
HISTORICAL_REQUEST_DELAY = 0.1
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)

CHART_MAP: Dict[str, str] = {
    'hot-100': 'hot-100',
    'billboard-200': 'billboard-200',
    'artist-100': 'artist-100',
    'pop-songs': 'pop-songs',
    'country-songs': 'country-songs',
    'rock-songs': 'hot-rock-songs',
    'r-b-songs': 'hot-r-and-and-b-songs',
    'rap-songs': 'hot-rap-songs',
    'dance-songs': 'hot-dance-electronic-songs',
    'latin-songs': 'hot-latin-songs',
}


def _parse_position(text: str) -> Optional[int]:
    """Numeric chart label, or None for '-', '0' and non-numeric labels."""
    text = (text or "").strip()
    if not text.isdigit():
        return None
    value = int(text)
    return value if value > 0 else None


def parse_chart_page(html: str, chart_type: str, date: datetime) -> ChartData:
    """Parse a billboard.com chart page into ChartData."""
    soup = BeautifulSoup(html, "html.parser")
    entries: List[ChartEntry] = []

    for index, row in enumerate(soup.select("ul.o-chart-results-list-row")):
        title_tag = row.select_one("h3#title-of-a-story")
        if title_tag is None:
            continue
        artist_tag = title_tag.find_next_sibling("span")
        artist = artist_tag.get_text(strip=True) if artist_tag is not None else ""
        if not artist:
            logger.debug(f"Skipping row {index + 1} of {chart_type}: no artist")
            continue

        labels = [
            span.get_text(strip=True)
            for span in row.select("li.o-chart-results-list__item > span.c-label")
        ]
        numeric = [label for label in labels if label.isdigit() or label == "-"]

        rank = _parse_position(numeric[0]) if numeric else None
        last_week = peak = weeks = None
        if len(numeric) >= 4:
            last_week, peak, weeks = (_parse_position(label) for label in numeric[-3:])

        image = row.select_one("img")
        cover = None
        if image is not None:
            cover = image.get("data-lazy-src") or image.get("src")

        entries.append(ChartEntry(
            rank=rank or (index + 1),
            title=title_tag.get_text(strip=True),
            artist=artist,
            last_week=last_week,
            peak_position=peak,
            weeks_on_chart=weeks,
            chart_date=date,
            source=ChartSource.BILLBOARD,
            metadata=coerce_metadata({'cover': cover}),
        ))

    date_picker = soup.select_one("#chart-date-picker")
    week = date_picker.get("data-date") if date_picker is not None else None

    return ChartData(
        chart_type=chart_type,
        date=date,
        entries=tuple(entries),
        source=ChartSource.BILLBOARD,
        total_entries=len(entries),
        metadata=coerce_metadata({'week': week}),
    )


class BillboardClient:
    """Billboard chart provider."""

    name = "Billboard"
    source = ChartSource.BILLBOARD

    def __init__(self, session: Optional[requests.Session] = None, timeout: int = REQUEST_TIMEOUT):
        self._session = session or requests.Session()
        self._timeout = timeout

    def get_available_charts(self) -> List[str]:
        return list(CHART_MAP)

    def get_chart(self, chart_type: str, options: Optional[FetchOptions] = None) -> ChartData:
        """Fetch a chart for options.date (defaults to the latest chart)."""
        options = options or FetchOptions()
        date = options.date or utc_now()
        url = CHART_URL_TEMPLATE.format(
            chart=CHART_MAP.get(chart_type, chart_type),
            date=format_date(date) if options.date else "",
        ).rstrip("/") + "/"

        try:
            resp = self._session.get(url, headers={"User-Agent": USER_AGENT}, timeout=self._timeout)
            resp.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else 500
            raise APIError(f"Failed to fetch Billboard chart {chart_type}: {e}", status,
                           ChartSource.BILLBOARD) from e
        except requests.RequestException as e:
            raise APIError(f"Failed to fetch Billboard chart {chart_type}: {e}", 500,
                           ChartSource.BILLBOARD) from e

        chart = parse_chart_page(resp.text, chart_type, date)
        if options.limit:
            entries = chart.entries[:options.limit]
            chart = ChartData(
                chart_type=chart.chart_type,
                date=chart.date,
                entries=entries,
                source=chart.source,
                total_entries=len(entries),
                metadata=chart.metadata,
            )
        return chart

    def get_historical_data(self, chart_type: str, date_range: DateRange) -> HistoricalChartData:
        """Fetch weekly snapshots between the range bounds. Failed weeks are skipped."""
        data = []
        for date in self._generate_weekly_dates(date_range.start, date_range.end):
            try:
                data.append(self.get_chart(chart_type, FetchOptions(date=date)))
                time.sleep(HISTORICAL_REQUEST_DELAY)
            except APIError as e:
                logger.warning(f"Failed to fetch {chart_type} for {format_date(date)}: {e}")

        return HistoricalChartData(
            chart_type=chart_type,
            date_range=date_range,
            data=data,
            source=ChartSource.BILLBOARD,
        )

    def get_chart_info(self, chart_type: str) -> Optional[Dict[str, object]]:
        if chart_type in CHART_MAP:
            return {'name': chart_type, 'available': True}
        return None

    @staticmethod
    def _generate_weekly_dates(start: datetime, end: datetime) -> List[datetime]:
        dates = []
        current = start
        while current <= end:
            dates.append(current)
            current = current + timedelta(days=7)
        return dates
