from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest

from chartkit.application.cache import CacheOptions
from chartkit.application.hub import ChartHub, HubConfig, create_hub
from chartkit.application.registry import ClientRegistry
from chartkit.application.search import SearchQuery
from chartkit.crosscutting.config import ConfigManager
from chartkit.domain.entities import (
    ChartData, ChartEntry, ChartSource, DateRange, FetchOptions, HistoricalChartData,
)
from chartkit.domain.errors import APIError, ChartKitError
from chartkit.infrastructure.providers.billboard import BillboardClient
from chartkit.infrastructure.providers.lastfm import LastFMClient
from chartkit.infrastructure.stores import InMemoryStore, JsonFileStore

TODAY = datetime.now(timezone.utc)

class FakeClient:
    """In-memory chart client returning canned rows per chart type."""

    name = "Fake"

    def __init__(self, source=ChartSource.BILLBOARD, charts=None):
        self.source = source
        self.charts = charts or {
            'hot-100': [("Love Story", "Taylor Swift"), ("God's Plan", "Drake")],
            'pop-songs': [("Blank Space", "Taylor Swift")],
        }
        self.calls = []

    def get_available_charts(self):
        return list(self.charts)

    def get_chart(self, chart_type, options=None):
        options = options or FetchOptions()
        self.calls.append((chart_type, options.date))
        if chart_type not in self.charts:
            raise APIError(f"Unknown chart type: {chart_type}", 400, self.source)
        date = options.date or TODAY
        entries = tuple(
            ChartEntry(rank=i + 1, title=title, artist=artist, chart_date=date, source=self.source)
            for i, (title, artist) in enumerate(self.charts[chart_type])
        )
        return ChartData(chart_type=chart_type, date=date, entries=entries, source=self.source,
                         total_entries=len(entries))

    def get_historical_data(self, chart_type, date_range):
        return HistoricalChartData(chart_type=chart_type, date_range=date_range,
                                   data=[self.get_chart(chart_type)], source=self.source)

class TestChartHub:
    """Tests for the ChartHub facade."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = FakeClient()
        registry = ClientRegistry()
        registry.add(ChartSource.BILLBOARD, self.client)
        self.hub = ChartHub(HubConfig(cache_options=CacheOptions(max_size=20)), registry=registry)

    def test_default_clients(self):
        """Billboard is always registered; Last.fm only with an API key."""
        hub = ChartHub()
        assert isinstance(hub.registry.get(ChartSource.BILLBOARD), BillboardClient)
        assert ChartSource.LASTFM not in hub.registry

        hub = ChartHub(HubConfig(api_keys={'lastfm': 'key123'}))
        client = hub.registry.get(ChartSource.LASTFM)
        assert isinstance(client, LastFMClient)
        assert client.api_key == 'key123'

    def test_get_chart_uses_cache(self):
        """A second request for the same chart is served from cache."""
        first = self.hub.get_chart('hot-100')
        second = self.hub.get_chart('hot-100')

        assert first == second
        assert len(self.client.calls) == 1
        assert self.hub.get_cache_stats()['totalItems'] == 1

    def test_force_refresh_and_use_cache_bypass(self):
        """force_refresh and use_cache=False skip the cache read."""
        self.hub.get_chart('hot-100')
        self.hub.get_chart('hot-100', options=FetchOptions(force_refresh=True))
        self.hub.get_chart('hot-100', options=FetchOptions(use_cache=False))
        assert len(self.client.calls) == 3

    def test_cache_disabled(self):
        """With caching disabled nothing is stored."""
        self.hub.update_config(enable_cache=False)
        self.hub.get_chart('hot-100')
        self.hub.get_chart('hot-100')
        assert len(self.client.calls) == 2
        assert self.hub.get_cache_stats()['totalItems'] == 0

    def test_auto_index(self):
        """Fetched charts are indexed when auto_index is on."""
        self.hub.get_chart('hot-100')
        assert self.hub.search_engine.indexed_charts == 0

        self.hub.update_config(auto_index=True)
        self.hub.get_chart('pop-songs')
        response = self.hub.search(SearchQuery(artist="Taylor Swift"))
        assert [r.entry.title for r in response.results] == ["Blank Space"]

    def test_auto_index_cache_hit_from_persistent_store(self):
        """Charts served from a warm persistent cache are indexed too."""
        store = InMemoryStore()
        options = CacheOptions(persistent=True)
        registry = ClientRegistry()
        registry.add(ChartSource.BILLBOARD, self.client)
        ChartHub(HubConfig(cache_options=options), registry=registry, store=store).get_chart('hot-100')

        hub = ChartHub(HubConfig(cache_options=options, auto_index=True), registry=registry, store=store)
        hub.get_chart('hot-100')
        hub.get_chart('hot-100')

        assert len(self.client.calls) == 1
        assert hub.search_engine.indexed_charts == 1
        response = hub.search(SearchQuery(artist="Drake"))
        assert [r.entry.title for r in response.results] == ["God's Plan"]

    def test_missing_source_raises(self):
        """Requests for unregistered sources raise NO_CLIENT."""
        with pytest.raises(ChartKitError) as exc_info:
            self.hub.get_chart('top-tracks', ChartSource.LASTFM)
        assert exc_info.value.code == "NO_CLIENT"

    def test_provider_errors_propagate(self):
        """Provider failures reach the caller."""
        with pytest.raises(APIError):
            self.hub.get_chart('unknown-chart')

    def test_compare_charts(self):
        """compare_charts treats date2 as current and date1 as previous."""
        date1 = datetime(2024, 1, 6, tzinfo=timezone.utc)
        date2 = date1 + timedelta(days=7)

        analytics = self.hub.compare_charts('hot-100', date1, date2)

        assert [call[1] for call in self.client.calls] == [date2, date1]
        assert analytics.total_entries == 2
        assert analytics.new_entries == 0

    def test_get_trends(self):
        """get_trends compares today against weeks_back weeks ago."""
        self.hub.get_trends('hot-100', weeks_back=2)
        current_date, previous_date = (call[1] for call in self.client.calls)
        assert current_date - previous_date == timedelta(weeks=2)

    def test_search_track(self):
        """search_track returns charts containing both substrings."""
        charts = self.hub.search_track('love', 'swift')
        assert [c.chart_type for c in charts] == ['hot-100']

        assert self.hub.search_track('blank', 'taylor', chart_type='hot-100') == []

    def test_search_track_skips_failing_charts(self):
        """A failing chart does not abort the search."""
        charts = self.hub.search_track('love', 'swift', chart_type='missing')
        assert charts == []

    def test_multi_source_chart_omits_failures(self):
        """Failing or unregistered sources are left out of the result."""
        yandex = FakeClient(ChartSource.custom('yandex'), {'hot-100': [("Song", "Artist")]})
        self.hub.add_client(yandex.source, yandex)

        result = self.hub.get_multi_source_chart(
            'hot-100', [ChartSource.BILLBOARD, ChartSource.LASTFM, yandex.source]
        )
        assert set(result) == {ChartSource.BILLBOARD, yandex.source}

    def test_multi_source_chart_defaults_to_registered_sources(self):
        """Without explicit sources every registered client is asked."""
        lastfm = FakeClient(ChartSource.LASTFM)
        self.hub.add_client(ChartSource.LASTFM, lastfm)

        result = self.hub.get_multi_source_chart('pop-songs')

        assert list(result) == [ChartSource.BILLBOARD, ChartSource.LASTFM]
        assert result[ChartSource.LASTFM].source == ChartSource.LASTFM

    def test_clear_cache(self):
        """Clearing one chart leaves other charts cached."""
        self.hub.get_chart('hot-100')
        self.hub.get_chart('pop-songs')
        self.hub.clear_cache('hot-100', ChartSource.BILLBOARD)
        assert self.hub.get_cache_stats()['totalItems'] == 1

    def test_client_management(self):
        """Clients can be added and removed at runtime."""
        lastfm = FakeClient(ChartSource.LASTFM)
        self.hub.add_client(ChartSource.LASTFM, lastfm)
        assert self.hub.get_available_sources() == [ChartSource.BILLBOARD, ChartSource.LASTFM]
        assert self.hub.get_available_charts(ChartSource.LASTFM) == ['hot-100', 'pop-songs']

        self.hub.remove_client(ChartSource.LASTFM)
        assert self.hub.get_available_sources() == [ChartSource.BILLBOARD]

    def test_update_config_reinitializes_clients(self):
        """Changing api_keys registers the Last.fm client."""
        self.hub.update_config(api_keys={'lastfm': 'new-key'})
        assert self.hub.registry.get(ChartSource.LASTFM).api_key == 'new-key'
        assert self.hub.config.api_keys == {'lastfm': 'new-key'}

    def test_health_check(self):
        """Each source is probed independently."""
        broken = Mock()
        broken.get_available_charts.side_effect = RuntimeError("down")
        self.hub.add_client(ChartSource.LASTFM, broken)

        assert self.hub.health_check() == {'billboard': True, 'lastfm': False}

    def test_historical_data(self):
        """Historical requests go straight to the client."""
        date_range = DateRange(start=TODAY - timedelta(days=14), end=TODAY)
        history = self.hub.get_historical_data('hot-100', date_range)
        assert history.date_range == date_range
        assert len(history.data) == 1

    def test_find_similar(self):
        """find_similar delegates to the search engine."""
        chart = self.hub.get_chart('hot-100')
        self.hub.index_charts([chart, self.hub.get_chart('pop-songs')])

        results = self.hub.find_similar(chart.entries[0])
        assert "Love Story" not in [r.entry.title for r in results]
        assert results[0].entry.title == "Blank Space"

class TestCreateHub:
    """Tests for building a hub from configuration."""

    def test_create_hub_from_config(self, tmp_path, monkeypatch):
        """Config values flow into cache options and clients."""
        monkeypatch.setenv('LASTFM_API_KEY', 'lastfm-key')
        monkeypatch.setenv('CHARTKIT_CACHE_MAX_SIZE', '5')
        monkeypatch.setenv('CHARTKIT_CACHE_PERSISTENT', 'true')
        manager = ConfigManager(str(tmp_path))

        hub = create_hub(manager)

        assert hub.config.auto_index is True
        assert hub.get_cache_stats()['maxSize'] == 5
        assert hub.get_cache_stats()['persistent'] is True
        assert isinstance(hub.data_manager.cache._store, JsonFileStore)
        assert ChartSource.LASTFM in hub.registry
        assert ChartSource.custom('spotify') not in hub.registry

    @patch('chartkit.infrastructure.providers.spotify.SpotifyClientCredentials')
    @patch('chartkit.infrastructure.providers.spotify.spotipy.Spotify')
    def test_create_hub_registers_spotify(self, mock_spotify, mock_credentials, tmp_path, monkeypatch):
        """Spotify charts are available once client credentials are configured."""
        monkeypatch.setenv('SPOTIFY_CLIENT_ID', 'client-id')
        monkeypatch.setenv('SPOTIFY_CLIENT_SECRET', 'client-secret')

        hub = create_hub(ConfigManager(str(tmp_path)))

        assert ChartSource.custom('spotify') in hub.registry
        mock_credentials.assert_called_once_with(client_id='client-id', client_secret='client-secret')

    def test_create_hub_skips_broken_yandex(self, tmp_path, monkeypatch):
        """A Yandex client that fails to initialize is left out."""
        monkeypatch.setenv('YANDEX_TOKEN', 'token')
        with patch('chartkit.infrastructure.providers.yandex.YandexChartClient',
                   side_effect=APIError("bad token", 401, ChartSource.custom('yandex'))):
            hub = create_hub(ConfigManager(str(tmp_path)))

        assert ChartSource.custom('yandex') not in hub.registry
        assert ChartSource.BILLBOARD in hub.registry
