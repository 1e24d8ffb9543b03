import os
import sys
from datetime import datetime, timezone

import pytest


def _ensure_project_root_on_sys_path() -> None:
    here = os.path.dirname(__file__)
    project_root = os.path.abspath(os.path.join(here, "..", ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_sys_path()

from chartkit.crosscutting import config as config_module  # noqa: E402
from chartkit.application.hub import ChartHub, HubConfig  # noqa: E402
from chartkit.application.registry import ClientRegistry  # noqa: E402
from chartkit.domain.entities import (  # noqa: E402
    ChartData, ChartEntry, ChartSource, FetchOptions, HistoricalChartData,
)
from chartkit.domain.errors import APIError  # noqa: E402

CHART_DATE = datetime(2024, 1, 6, tzinfo=timezone.utc)

_ISOLATED_ENV = [
    'LASTFM_API_KEY',
    'YANDEX_TOKEN',
    'SPOTIFY_CLIENT_ID',
    'SPOTIFY_CLIENT_SECRET',
    'CHARTKIT_CACHE_TTL_MS',
    'CHARTKIT_CACHE_MAX_SIZE',
    'CHARTKIT_CACHE_PERSISTENT',
]


@pytest.fixture(autouse=True)
def _isolate_config(tmp_path, monkeypatch):
    """Keep credentials from the developer's environment out of tests.

    Every test gets an empty config directory and a fresh process-wide
    config manager.
    """
    for key in _ISOLATED_ENV:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv('CHARTKIT_CONFIG_DIR', str(tmp_path / 'chartkit-config'))
    monkeypatch.setattr(config_module, '_config_manager', None)
    yield


@pytest.fixture
def sample_chart():
    """The three-entry chart used throughout the search tests."""
    rows = [
        (1, "Love Story", "Taylor Swift", "Fearless"),
        (2, "Blank Space", "Taylor Swift", "1989"),
        (3, "God's Plan", "Drake", "Scorpion"),
    ]
    entries = [
        ChartEntry(
            rank=rank,
            title=title,
            artist=artist,
            album=album,
            chart_date=CHART_DATE,
            source=ChartSource.BILLBOARD,
        )
        for rank, title, artist, album in rows
    ]
    return ChartData(
        chart_type='hot-100',
        date=CHART_DATE,
        entries=tuple(entries),
        source=ChartSource.BILLBOARD,
        total_entries=len(entries),
    )


class StaticChartClient:
    """Chart client serving fixed rows, dated CHART_DATE unless a date is requested."""

    name = "Static"

    CHARTS = {
        'hot-100': [
            ("Love Story", "Taylor Swift", "Fearless", None),
            ("God's Plan", "Drake", "Scorpion", 1),
        ],
        'pop-songs': [
            ("Blank Space", "Taylor Swift", "1989", 3),
        ],
    }

    def __init__(self, source=ChartSource.BILLBOARD):
        self.source = source

    def get_available_charts(self):
        return list(self.CHARTS)

    def get_chart(self, chart_type, options=None):
        options = options or FetchOptions()
        if chart_type not in self.CHARTS:
            raise APIError(f"Unknown chart type: {chart_type}", 400, self.source)
        date = options.date or CHART_DATE
        entries = tuple(
            ChartEntry(rank=i + 1, title=title, artist=artist, album=album, last_week=last_week,
                       chart_date=date, source=self.source)
            for i, (title, artist, album, last_week) in enumerate(self.CHARTS[chart_type])
        )
        if options.limit:
            entries = entries[:options.limit]
        return ChartData(chart_type=chart_type, date=date, entries=entries, source=self.source,
                         total_entries=len(entries))

    def get_historical_data(self, chart_type, date_range):
        return HistoricalChartData(chart_type=chart_type, date_range=date_range,
                                   data=[self.get_chart(chart_type, FetchOptions(date=date_range.end))],
                                   source=self.source)


@pytest.fixture
def static_hub():
    """Hub with only the static Billboard client registered and an in-memory cache."""
    registry = ClientRegistry()
    registry.add(ChartSource.BILLBOARD, StaticChartClient())
    return ChartHub(HubConfig(), registry=registry)
