import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from chartkit.application.analytics import generate_chart_analytics
from chartkit.application.cache import CacheOptions
from chartkit.application.data_manager import ChartDataManager
from chartkit.application.registry import ClientRegistry
from chartkit.application.search import SearchEngine, SearchQuery, SearchResponse, SearchResult
from chartkit.crosscutting.logging import CorrelationContext, log_fetch_complete, log_fetch_start
from chartkit.domain.entities import (
    ChartAnalytics, ChartData, ChartEntry, ChartSource, DateRange, FetchOptions, HistoricalChartData,
)
from chartkit.domain.normalization import utc_now
from chartkit.domain.ports import ChartClient, PersistentStore

logger = logging.getLogger(__name__)


@dataclass
class HubConfig:
    """Configuration for ChartHub."""

    enable_cache: bool = True
    cache_options: Optional[CacheOptions] = None
    api_keys: Dict[str, str] = field(default_factory=dict)
    default_source: ChartSource = ChartSource.BILLBOARD
    auto_index: bool = False


class ChartHub:
    """Facade routing chart requests to provider clients, the cache and the search engine."""

    def __init__(self,
                 config: Optional[HubConfig] = None,
                 registry: Optional[ClientRegistry] = None,
                 data_manager: Optional[ChartDataManager] = None,
                 search_engine: Optional[SearchEngine] = None,
                 store: Optional[PersistentStore] = None):
        """Initialize the hub.

        Args:
            config: Hub configuration
            registry: Client registry; a fresh one with the built-in clients is created if omitted
            data_manager: Cache routing; built from config.cache_options if omitted
            search_engine: Search engine fed by index_charts() and auto_index
            store: Persistent store for the cache when cache options enable persistence
        """
        self.config = config or HubConfig()
        if data_manager is None:
            data_manager = ChartDataManager(self.config.cache_options, store=store)
        self.data_manager = data_manager
        self.search_engine = search_engine if search_engine is not None else SearchEngine()

        if registry is None:
            self.registry = ClientRegistry()
            self._initialize_clients()
        else:
            self.registry = registry

    def _initialize_clients(self) -> None:
        """Register the built-in clients. Last.fm requires an API key."""
        from chartkit.infrastructure.providers.billboard import BillboardClient
        from chartkit.infrastructure.providers.lastfm import LastFMClient

        self.registry.add(ChartSource.BILLBOARD, BillboardClient())

        lastfm_key = self.config.api_keys.get("lastfm")
        if lastfm_key:
            self.registry.add(ChartSource.LASTFM, LastFMClient(lastfm_key))

    def _source(self, source: Optional[ChartSource]) -> ChartSource:
        return source or self.config.default_source

    def get_chart(self, chart_type: str, source: Optional[ChartSource] = None,
                  options: Optional[FetchOptions] = None) -> ChartData:
        """Return a chart, from cache when possible."""
        source = self._source(source)
        options = options or FetchOptions()
        client = self.registry.get(source)

        with CorrelationContext(source=source.tag, chart_type=chart_type, stage="fetch"):
            if self.config.enable_cache and options.use_cache and not options.force_refresh:
                cached = self.data_manager.get_cached_chart(chart_type, source, options.date)
                if cached is not None:
                    logger.debug(f"Cache hit for {source}/{chart_type}")
                    # Persistent caches outlive the in-memory index
                    if self.config.auto_index and not self.search_engine.is_indexed(cached):
                        self.search_engine.index_chart_data([cached])
                    return cached

            log_fetch_start(logger, source.tag, chart_type, date=options.date)
            chart_data = client.get_chart(chart_type, options)
            log_fetch_complete(logger, source.tag, chart_type, len(chart_data.entries))

            if self.config.enable_cache:
                self.data_manager.cache_chart(chart_data)

            if self.config.auto_index:
                self.search_engine.index_chart_data([chart_data])

        return chart_data

    def get_historical_data(self, chart_type: str, date_range: DateRange,
                            source: Optional[ChartSource] = None) -> HistoricalChartData:
        client = self.registry.get(self._source(source))
        return client.get_historical_data(chart_type, date_range)

    def get_available_charts(self, source: Optional[ChartSource] = None) -> List[str]:
        client = self.registry.get(self._source(source))
        return client.get_available_charts()

    def compare_charts(self, chart_type: str, date1: datetime, date2: datetime,
                       source: Optional[ChartSource] = None) -> ChartAnalytics:
        """Analytics of the chart at date2 relative to the chart at date1."""
        source = self._source(source)
        current_chart = self.get_chart(chart_type, source, FetchOptions(date=date2))
        previous_chart = self.get_chart(chart_type, source, FetchOptions(date=date1))
        return generate_chart_analytics(current_chart, previous_chart)

    def get_trends(self, chart_type: str, source: Optional[ChartSource] = None,
                   weeks_back: int = 1) -> ChartAnalytics:
        current_date = utc_now()
        previous_date = current_date - timedelta(weeks=weeks_back)
        return self.compare_charts(chart_type, previous_date, current_date, source)

    def search_track(self, title: str, artist: str, chart_type: Optional[str] = None,
                     source: Optional[ChartSource] = None) -> List[ChartData]:
        """Charts containing an entry whose title and artist contain the given text."""
        source = self._source(source)
        client = self.registry.get(source)
        chart_types = [chart_type] if chart_type else client.get_available_charts()

        title_lower = title.lower()
        artist_lower = artist.lower()
        results = []
        for current_type in chart_types:
            try:
                chart_data = self.get_chart(current_type, source)
            except Exception as e:
                logger.warning(f"Failed to search chart {current_type}: {e}")
                continue

            if any(title_lower in entry.title.lower() and artist_lower in entry.artist.lower()
                   for entry in chart_data.entries):
                results.append(chart_data)

        return results

    def get_multi_source_chart(self, chart_type: str, sources: Optional[Iterable[ChartSource]] = None,
                               options: Optional[FetchOptions] = None) -> Dict[ChartSource, ChartData]:
        """Fetch the same chart type from several sources, all registered ones by default.

        Failing sources are omitted.
        """
        results = {}
        for source in (sources if sources is not None else self.registry):
            try:
                results[source] = self.get_chart(chart_type, source, options)
            except Exception as e:
                logger.warning(f"Failed to fetch {chart_type} from {source}: {e}")
        return results

    def clear_cache(self, chart_type: Optional[str] = None,
                    source: Optional[ChartSource] = None) -> None:
        self.data_manager.clear_cache(chart_type, source)

    def get_cache_stats(self) -> Dict[str, object]:
        return self.data_manager.get_cache_stats()

    def add_client(self, source: ChartSource, client: ChartClient) -> None:
        self.registry.add(source, client)

    def remove_client(self, source: ChartSource) -> None:
        self.registry.remove(source)

    def get_available_sources(self) -> List[ChartSource]:
        return self.registry.sources()

    def update_config(self, **changes) -> None:
        """Update configuration fields. Built-in clients are re-created when api_keys change."""
        self.config = replace(self.config, **changes)
        if "api_keys" in changes:
            self._initialize_clients()

    def health_check(self) -> Dict[str, bool]:
        """Probe every registered client with a cheap call."""
        health = {}
        for source, client in self.registry.items():
            try:
                client.get_available_charts()
                health[source.tag] = True
            except Exception as e:
                logger.warning(f"Health check failed for {source}: {e}")
                health[source.tag] = False
        return health

    def index_charts(self, charts: Iterable[ChartData]) -> None:
        self.search_engine.index_chart_data(charts)

    def search(self, query: SearchQuery) -> SearchResponse:
        return self.search_engine.search(query)

    def find_similar(self, entry: ChartEntry, limit: int = 10) -> List[SearchResult]:
        return self.search_engine.find_similar(entry, limit)


def create_hub(config_manager=None, auto_index: bool = True) -> ChartHub:
    """Build a hub from the config directory and environment.

    Yandex and Spotify chart clients are registered when their credentials
    are configured. Failures to build them are logged and the source is
    left out.
    """
    from chartkit.crosscutting.config import ConfigError, get_config_manager

    config_manager = config_manager or get_config_manager()
    cache_options = CacheOptions(**config_manager.get_cache_settings())
    store = None
    if cache_options.persistent:
        from chartkit.infrastructure.stores import JsonFileStore
        store = JsonFileStore(config_manager.cache_dir)

    hub = ChartHub(HubConfig(
        cache_options=cache_options,
        api_keys=config_manager.get_api_keys(),
        auto_index=auto_index,
    ), store=store)

    yandex_token = config_manager.get_yandex_token()
    if yandex_token:
        try:
            from chartkit.infrastructure.providers.yandex import YandexChartClient
            client = YandexChartClient(yandex_token)
            hub.add_client(client.source, client)
        except Exception as e:
            logger.warning(f"Yandex Music charts unavailable: {e}")

    try:
        spotify_config = config_manager.get_spotify_client_config()
    except ConfigError:
        spotify_config = None
    if spotify_config:
        from chartkit.infrastructure.providers.spotify import SpotifyPlaylistChartClient
        client = SpotifyPlaylistChartClient(spotify_config['client_id'], spotify_config['client_secret'])
        hub.add_client(client.source, client)

    return hub
