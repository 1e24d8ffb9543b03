import logging
from typing import Any, Dict, List, Optional

import requests

from chartkit.domain.entities import (
    ChartData, ChartEntry, ChartSource, DateRange, FetchOptions, HistoricalChartData, coerce_metadata,
)
from chartkit.domain.errors import APIError, RateLimited
from chartkit.domain.normalization import utc_now

logger = logging.getLogger(__name__)

BASE_URL = "https://ws.audioscrobbler.com/2.0/"
REQUEST_TIMEOUT = 15
DEFAULT_LIMIT = 50
RATE_LIMIT_ERROR_CODE = 29

CHART_MAP: Dict[str, Dict[str, Optional[str]]] = {
    'top-tracks': {'method': 'chart.gettoptracks', 'period': None},
    'top-albums': {'method': 'chart.gettopalbums', 'period': None},
    'top-artists': {'method': 'chart.gettopartists', 'period': None},
    'top-tracks-weekly': {'method': 'chart.gettoptracks', 'period': '7day'},
    'top-tracks-monthly': {'method': 'chart.gettoptracks', 'period': '1month'},
    'top-tracks-yearly': {'method': 'chart.gettoptracks', 'period': '12month'},
    'top-albums-weekly': {'method': 'chart.gettopalbums', 'period': '7day'},
    'top-albums-monthly': {'method': 'chart.gettopalbums', 'period': '1month'},
    'top-albums-yearly': {'method': 'chart.gettopalbums', 'period': '12month'},
    'top-artists-weekly': {'method': 'chart.gettopartists', 'period': '7day'},
    'top-artists-monthly': {'method': 'chart.gettopartists', 'period': '1month'},
    'top-artists-yearly': {'method': 'chart.gettopartists', 'period': '12month'},
}


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _item_rank(item: Dict[str, Any], index: int) -> int:
    attr = item.get('@attr') or {}
    return _to_int(attr.get('rank') or item.get('rank'), index + 1)


def _artist_name(item: Dict[str, Any]) -> str:
    artist = item.get('artist')
    if isinstance(artist, dict):
        return artist.get('name', '')
    return artist or ''


class LastFMClient:
    """Last.fm chart provider using the public JSON web service."""

    name = "Last.FM"
    source = ChartSource.LASTFM

    def __init__(self, api_key: Optional[str],
                 session: Optional[requests.Session] = None,
                 timeout: int = REQUEST_TIMEOUT):
        self.api_key = api_key
        self._session = session or requests.Session()
        self._timeout = timeout
        if not self.api_key:
            logger.warning("Last.fm API key not provided - Last.fm features will be unavailable")

    def get_available_charts(self) -> List[str]:
        return list(CHART_MAP)

    def get_chart(self, chart_type: str, options: Optional[FetchOptions] = None) -> ChartData:
        self._require_api_key()
        options = options or FetchOptions()

        chart_config = CHART_MAP.get(chart_type)
        if chart_config is None:
            raise APIError(f"Unknown chart type: {chart_type}", 400, ChartSource.LASTFM)

        data = self._request({
            'method': chart_config['method'],
            'limit': str(options.limit or DEFAULT_LIMIT),
            'page': '1',
        }, "Last.fm API error")

        return self._transform_to_chart_data(data, chart_type, options.date or utc_now())

    def get_historical_data(self, chart_type: str, date_range: DateRange) -> HistoricalChartData:
        """Last.fm has no chart archive; the current chart stands in for the range end."""
        current = self.get_chart(chart_type, FetchOptions(date=date_range.end))
        return HistoricalChartData(
            chart_type=chart_type,
            date_range=date_range,
            data=[current],
            source=ChartSource.LASTFM,
        )

    def search_tracks(self, query: str, limit: int = DEFAULT_LIMIT) -> List[ChartEntry]:
        """Search tracks by title. Results are ranked in the order Last.fm returns them."""
        self._require_api_key()
        data = self._request({
            'method': 'track.search',
            'track': query,
            'limit': str(limit),
        }, "Last.fm search error")

        tracks = ((data.get('results') or {}).get('trackmatches') or {}).get('track') or []
        now = utc_now()
        return [
            ChartEntry(
                rank=index + 1,
                title=track.get('name', ''),
                artist=_artist_name(track),
                chart_date=now,
                source=ChartSource.LASTFM,
                metadata=coerce_metadata({
                    'listeners': track.get('listeners'),
                    'url': track.get('url'),
                    'mbid': track.get('mbid'),
                }),
            )
            for index, track in enumerate(tracks)
        ]

    def get_track_info(self, artist: str, track: str) -> Dict[str, Any]:
        self._require_api_key()
        data = self._request({
            'method': 'track.getInfo',
            'artist': artist,
            'track': track,
        }, "Last.fm track info error")
        return data.get('track') or {}

    def _require_api_key(self) -> None:
        if not self.api_key:
            raise APIError("Last.fm API key is required", 401, ChartSource.LASTFM)

    def _request(self, params: Dict[str, str], error_prefix: str) -> Dict[str, Any]:
        query = dict(params)
        query.update({'api_key': self.api_key, 'format': 'json'})

        try:
            resp = self._session.get(BASE_URL, params=query, timeout=self._timeout)
        except requests.RequestException as e:
            raise APIError(f"{error_prefix}: {e}", 500, ChartSource.LASTFM) from e

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if resp.status_code == 429 or data.get('error') == RATE_LIMIT_ERROR_CODE:
            raise RateLimited(ChartSource.LASTFM, message=f"{error_prefix}: rate limit exceeded")

        if resp.status_code >= 400 or 'error' in data:
            message = data.get('message') or resp.reason or 'unknown error'
            status = resp.status_code if resp.status_code >= 400 else 500
            raise APIError(f"{error_prefix}: {message}", status, ChartSource.LASTFM)

        return data

    def _transform_to_chart_data(self, data: Dict[str, Any], chart_type: str, date) -> ChartData:
        chart_data: Dict[str, Any] = next(iter(data.values()), {}) if data else {}
        if not isinstance(chart_data, dict):
            chart_data = {}

        if chart_data.get('track'):
            entries = self._transform_tracks(chart_data['track'], date)
        elif chart_data.get('album'):
            entries = self._transform_albums(chart_data['album'], date)
        elif chart_data.get('artist'):
            entries = self._transform_artists(chart_data['artist'], date)
        else:
            entries = []

        attr = chart_data.get('@attr') or {}
        return ChartData(
            chart_type=chart_type,
            date=date,
            entries=tuple(entries),
            source=ChartSource.LASTFM,
            total_entries=len(entries),
            metadata=coerce_metadata({
                'period': CHART_MAP[chart_type]['period'] or 'overall',
                'total': attr.get('total'),
                'page': attr.get('page'),
            }),
        )

    def _transform_tracks(self, tracks: List[Dict[str, Any]], date) -> List[ChartEntry]:
        entries = []
        for index, track in enumerate(tracks):
            artist = track.get('artist') or {}
            entries.append(ChartEntry(
                rank=_item_rank(track, index),
                title=track.get('name', ''),
                artist=_artist_name(track),
                chart_date=date,
                source=ChartSource.LASTFM,
                metadata=coerce_metadata({
                    'playcount': _to_int(track.get('playcount')),
                    'listeners': _to_int(track.get('listeners')),
                    'mbid': artist.get('mbid') if isinstance(artist, dict) else None,
                    'url': track.get('url'),
                }),
            ))
        return entries

    def _transform_albums(self, albums: List[Dict[str, Any]], date) -> List[ChartEntry]:
        entries = []
        for index, album in enumerate(albums):
            artist = album.get('artist') or {}
            entries.append(ChartEntry(
                rank=_item_rank(album, index),
                title=album.get('name', ''),
                artist=_artist_name(album),
                album=album.get('name'),
                chart_date=date,
                source=ChartSource.LASTFM,
                metadata=coerce_metadata({
                    'playcount': _to_int(album.get('playcount')),
                    'mbid': artist.get('mbid') if isinstance(artist, dict) else None,
                }),
            ))
        return entries

    def _transform_artists(self, artists: List[Dict[str, Any]], date) -> List[ChartEntry]:
        # Artist charts use the artist name as the title
        return [
            ChartEntry(
                rank=_item_rank(artist, index),
                title=artist.get('name', ''),
                artist=artist.get('name', ''),
                chart_date=date,
                source=ChartSource.LASTFM,
                metadata=coerce_metadata({
                    'playcount': _to_int(artist.get('playcount')),
                    'listeners': _to_int(artist.get('listeners')),
                }),
            )
            for index, artist in enumerate(artists)
        ]
