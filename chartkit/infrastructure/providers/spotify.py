import logging
from typing import Any, Dict, List, Optional

import spotipy
from spotipy.oauth2 import SpotifyClientCredentials

from chartkit.domain.entities import (
    ChartData, ChartEntry, ChartSource, DateRange, FetchOptions, HistoricalChartData, coerce_metadata,
)
from chartkit.domain.errors import APIError, RateLimited
from chartkit.domain.normalization import utc_now

logger = logging.getLogger(__name__)

SPOTIFY_SOURCE = ChartSource.custom("spotify")
PAGE_SIZE = 100
REQUEST_TIMEOUT = 15

# Spotify editorial playlists published as charts
PLAYLIST_MAP: Dict[str, str] = {
    'top-50-global': '37i9dQZEVXbMDoHDwVN2tL',
    'top-50-usa': '37i9dQZEVXbLRQDuF5jeBp',
    'viral-50-global': '37i9dQZEVXbLiRSasKsNU9',
}


class SpotifyPlaylistChartClient:
    """Reads Spotify chart playlists as ranked charts.

    Uses the client credentials flow, so no user login is needed.
    """

    name = "Spotify"
    source = SPOTIFY_SOURCE

    def __init__(self,
                 client_id: Optional[str] = None,
                 client_secret: Optional[str] = None,
                 client: Optional[spotipy.Spotify] = None):
        """Initialize the client.

        Args:
            client_id: Spotify application client ID
            client_secret: Spotify application client secret
            client: Pre-built spotipy client, mainly for tests
        """
        if client is not None:
            self._client = client
        else:
            auth_manager = SpotifyClientCredentials(client_id=client_id, client_secret=client_secret)
            self._client = spotipy.Spotify(auth_manager=auth_manager, requests_timeout=REQUEST_TIMEOUT)

    def get_available_charts(self) -> List[str]:
        return list(PLAYLIST_MAP)

    def get_chart(self, chart_type: str, options: Optional[FetchOptions] = None) -> ChartData:
        """Fetch a chart playlist. Playlist order is chart order."""
        options = options or FetchOptions()
        playlist_id = PLAYLIST_MAP.get(chart_type)
        if playlist_id is None:
            raise APIError(f"Unknown chart type: {chart_type}", 400, SPOTIFY_SOURCE)

        date = options.date or utc_now()
        items = self._fetch_items(playlist_id, chart_type, options.limit)

        entries = []
        for item in items:
            track = item.get('track') if item else None
            if not track:
                continue
            entries.append(self._to_entry(track, len(entries) + 1, date, item.get('added_at')))

        return ChartData(
            chart_type=chart_type,
            date=date,
            entries=tuple(entries),
            source=SPOTIFY_SOURCE,
            total_entries=len(entries),
            metadata=coerce_metadata({'playlistId': playlist_id}),
        )

    def get_historical_data(self, chart_type: str, date_range: DateRange) -> HistoricalChartData:
        current = self.get_chart(chart_type, FetchOptions(date=date_range.end))
        return HistoricalChartData(
            chart_type=chart_type,
            date_range=date_range,
            data=[current],
            source=SPOTIFY_SOURCE,
        )

    def _fetch_items(self, playlist_id: str, chart_type: str, limit: Optional[int]) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        offset = 0
        while True:
            try:
                page = self._client.playlist_items(playlist_id, limit=PAGE_SIZE, offset=offset)
            except spotipy.SpotifyException as e:
                if e.http_status == 429:
                    headers = getattr(e, 'headers', None) or {}
                    retry_after = int(headers.get('Retry-After', 1))
                    raise RateLimited(SPOTIFY_SOURCE, retry_after_ms=retry_after * 1000) from e
                raise APIError(f"Failed to fetch Spotify chart {chart_type}: {e}",
                               e.http_status or 500, SPOTIFY_SOURCE) from e

            page_items = (page or {}).get('items') or []
            items.extend(page_items)

            if limit and len(items) >= limit:
                return items[:limit]
            if not page or not page.get('next') or not page_items:
                return items
            offset += len(page_items)

    @staticmethod
    def _to_entry(track: Dict[str, Any], rank: int, date, added_at: Optional[str]) -> ChartEntry:
        artists = [artist.get('name', '') for artist in track.get('artists', []) if artist.get('name')]
        album = track.get('album') or {}
        images = album.get('images') or []
        track_id = track.get('id')

        return ChartEntry(
            rank=rank,
            title=track.get('name', ''),
            artist=", ".join(artists),
            album=album.get('name'),
            chart_date=date,
            source=SPOTIFY_SOURCE,
            metadata=coerce_metadata({
                'trackId': track_id,
                'uri': f"spotify:track:{track_id}" if track_id else None,
                'popularity': track.get('popularity'),
                'isrc': (track.get('external_ids') or {}).get('isrc'),
                'durationMs': track.get('duration_ms'),
                'cover': images[0].get('url') if images else None,
                'addedAt': added_at,
            }),
        )
