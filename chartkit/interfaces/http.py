import os
import sys
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, jsonify, request

from chartkit.application.hub import ChartHub, create_hub
from chartkit.application.search import NumericRange, SearchQuery
from chartkit.crosscutting.logging import get_logger
from chartkit.domain.entities import ChartSource, DateRange, FetchOptions
from chartkit.domain.errors import APIError, ChartKitError, RateLimited
from chartkit.domain.normalization import to_utc, utc_now

SUGGEST_FIELDS = ('title', 'artist', 'album')


def _int_arg(name: str) -> Optional[int]:
    value = request.args.get(name)
    if value is None or value == '':
        return None
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Query parameter '{name}' must be an integer")


def _bool_arg(name: str) -> bool:
    return request.args.get(name, '').lower() in ('1', 'true', 'yes')


def _date_arg(name: str) -> Optional[datetime]:
    value = request.args.get(name)
    if not value:
        return None
    try:
        return to_utc(datetime.fromisoformat(value))
    except ValueError:
        raise ValueError(f"Query parameter '{name}' must be an ISO date")


def _range_arg(name: str) -> Optional[NumericRange]:
    """NumericRange from min_<name>/max_<name>; a missing bound is left open."""
    low = _int_arg(f'min_{name}')
    high = _int_arg(f'max_{name}')
    if low is None and high is None:
        return None
    return NumericRange(low if low is not None else 0, high if high is not None else sys.maxsize)


def _date_range_arg() -> Optional[DateRange]:
    start = _date_arg('start')
    end = _date_arg('end')
    if start is None and end is None:
        return None
    return DateRange(
        start=start or datetime.min.replace(tzinfo=timezone.utc),
        end=end or datetime.max.replace(tzinfo=timezone.utc),
    )


def _has_criteria(query: SearchQuery) -> bool:
    return any((
        query.title, query.artist, query.album, query.chart_type, query.source,
        query.date_range, query.rank_range, query.weeks_range, query.peak_range,
        query.new_entries_only,
    ))


class HTTPServer:
    """HTTP server exposing charts, search and cache maintenance."""

    def __init__(self, host: str = 'localhost', port: int = 3000, debug: bool = False,
                 hub: Optional[ChartHub] = None):
        """Initialize HTTP server.

        Args:
            host: Bind address
            port: Bind port
            debug: Run Flask in debug mode
            hub: Hub serving the requests; built from configuration on first request if omitted
        """
        self.host = host
        self.port = port
        self.debug = debug
        self.app = Flask(__name__)
        self.logger = get_logger(__name__)
        self._hub = hub

        self.version = "0.1.0"
        self.commit = os.getenv('GIT_COMMIT', 'unknown')

        self._setup_routes()
        self._setup_error_handlers()

    @property
    def hub(self) -> ChartHub:
        if self._hub is None:
            self._hub = create_hub()
        return self._hub

    def _setup_error_handlers(self) -> None:
        @self.app.errorhandler(RateLimited)
        def rate_limited(error: RateLimited):
            response = jsonify({
                'error': str(error),
                'code': error.code,
                'source': error.source.tag if error.source else None,
                'retryAfterMs': error.retry_after_ms,
            })
            response.headers['Retry-After'] = str(max(1, error.retry_after_ms // 1000))
            return response, 429

        @self.app.errorhandler(APIError)
        def api_error(error: APIError):
            self.logger.error(f"Provider error: {error}")
            status = error.status_code if 400 <= error.status_code < 600 else 502
            return jsonify({
                'error': str(error),
                'code': error.code,
                'source': error.source.tag if error.source else None,
            }), status

        @self.app.errorhandler(ChartKitError)
        def chartkit_error(error: ChartKitError):
            status = 404 if error.code == 'NO_CLIENT' else 500
            return jsonify({'error': str(error), 'code': error.code}), status

        @self.app.errorhandler(ValueError)
        def bad_request(error: ValueError):
            return jsonify({'error': str(error)}), 400

    def _setup_routes(self) -> None:
        """Setup Flask routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint. Pass ?deep=1 to probe every registered source."""
            body = {
                'status': 'healthy',
                'version': self.version,
                'commit': self.commit,
                'timestamp': utc_now().isoformat(),
            }
            if _bool_arg('deep'):
                sources = self.hub.health_check()
                body['sources'] = sources
                if not all(sources.values()):
                    body['status'] = 'degraded'
            return jsonify(body), 200

        @self.app.route('/charts/<source>', methods=['GET'])
        def list_charts(source: str):
            chart_source = ChartSource.parse(source)
            return jsonify({
                'source': chart_source.tag,
                'charts': self.hub.get_available_charts(chart_source),
            }), 200

        @self.app.route('/charts/<source>/<chart_type>', methods=['GET'])
        def get_chart(source: str, chart_type: str):
            options = FetchOptions(
                date=_date_arg('date'),
                limit=_int_arg('limit'),
                use_cache=not _bool_arg('no_cache'),
                force_refresh=_bool_arg('refresh'),
            )
            chart = self.hub.get_chart(chart_type, ChartSource.parse(source), options)
            return jsonify(chart.to_json()), 200

        @self.app.route('/search', methods=['GET'])
        def search():
            source = request.args.get('source')
            query = SearchQuery(
                title=request.args.get('title'),
                artist=request.args.get('artist'),
                album=request.args.get('album'),
                chart_type=request.args.get('chart_type'),
                source=ChartSource.parse(source) if source else None,
                date_range=_date_range_arg(),
                rank_range=_range_arg('rank'),
                weeks_range=_range_arg('weeks'),
                peak_range=_range_arg('peak'),
                new_entries_only=_bool_arg('new_only'),
                fuzzy=_bool_arg('fuzzy'),
                limit=_int_arg('limit'),
            )
            if not _has_criteria(query):
                return jsonify({'error': 'At least one search field or filter is required'}), 400

            response = self.hub.search(query)

            stats = response.stats
            return jsonify({
                'results': [
                    {
                        'entry': result.entry.to_json(),
                        'chartType': result.chart_data.chart_type,
                        'chartDate': result.chart_data.date.isoformat(),
                        'score': result.score,
                        'matches': [
                            {
                                'field': match.field,
                                'value': match.value,
                                'matchType': match.match_type.value,
                                'confidence': match.confidence,
                            }
                            for match in result.matches
                        ],
                    }
                    for result in response.results
                ],
                'stats': {
                    'totalResults': stats.total_results,
                    'searchTime': stats.search_time,
                    'chartsSearched': stats.charts_searched,
                    'exactMatches': stats.exact_matches,
                    'partialMatches': stats.partial_matches,
                    'fuzzyMatches': stats.fuzzy_matches,
                },
            }), 200

        @self.app.route('/search/suggest', methods=['GET'])
        def suggest():
            term = request.args.get('q', '')
            field = request.args.get('field', 'title')
            if field not in SUGGEST_FIELDS:
                return jsonify({'error': f"field must be one of {', '.join(SUGGEST_FIELDS)}"}), 400
            limit = _int_arg('limit') or 10
            suggestions = self.hub.search_engine.quick_search(term, field, limit)
            return jsonify({'suggestions': suggestions}), 200

        @self.app.route('/cache/stats', methods=['GET'])
        def cache_stats():
            return jsonify(self.hub.get_cache_stats()), 200

        @self.app.route('/cache', methods=['DELETE'])
        def clear_cache():
            source = request.args.get('source')
            self.hub.clear_cache(
                request.args.get('chart_type'),
                ChartSource.parse(source) if source else None,
            )
            return jsonify({'status': 'cleared'}), 200

        @self.app.route('/', methods=['GET'])
        def root():
            """Root endpoint with basic info."""
            return jsonify({
                'service': 'chartkit HTTP Interface',
                'version': self.version,
                'endpoints': {
                    'health': '/health',
                    'charts': '/charts/<source>',
                    'chart': '/charts/<source>/<chart_type>',
                    'search': '/search',
                    'suggest': '/search/suggest',
                    'cache_stats': '/cache/stats',
                    'cache_clear': 'DELETE /cache',
                }
            }), 200

    def run(self) -> None:
        """Run the HTTP server."""
        self.logger.info(f"Starting chartkit HTTP server on {self.host}:{self.port}")
        self.app.run(
            host=self.host,
            port=self.port,
            debug=self.debug
        )


def create_app(hub: Optional[ChartHub] = None) -> Flask:
    """Create Flask app, mainly for tests and WSGI servers."""
    server = HTTPServer(hub=hub)
    return server.app
