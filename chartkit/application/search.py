import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from chartkit.domain.entities import ChartData, ChartEntry, ChartSource, DateRange
from chartkit.domain.normalization import create_entry_hash, normalize_text, to_utc, utc_now

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 0.6
TITLE_WEIGHT = 3
ARTIST_WEIGHT = 2
ALBUM_WEIGHT = 1
RECENCY_WINDOW_DAYS = 30

SEARCH_FIELDS = ("title", "artist", "album")


class MatchType(str, Enum):
    """How a query term matched an entry field."""

    EXACT = "exact"
    PARTIAL = "partial"
    FUZZY = "fuzzy"


@dataclass(frozen=True)
class NumericRange:
    """Inclusive numeric bounds."""

    min: int
    max: int

    def contains(self, value: int) -> bool:
        return self.min <= value <= self.max


@dataclass
class SearchQuery:
    """Structured query over indexed chart entries."""

    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    chart_type: Optional[str] = None
    source: Optional[ChartSource] = None
    date_range: Optional[DateRange] = None
    rank_range: Optional[NumericRange] = None
    weeks_range: Optional[NumericRange] = None
    peak_range: Optional[NumericRange] = None
    new_entries_only: bool = False
    fuzzy: bool = False
    limit: Optional[int] = None


@dataclass(frozen=True)
class SearchMatch:
    """A single field match contributing to a result's score."""

    field: str
    value: str
    match_type: MatchType
    confidence: float


@dataclass
class SearchResult:
    """A scored entry together with the chart it came from."""

    entry: ChartEntry
    chart_data: ChartData
    score: float
    matches: List[SearchMatch] = field(default_factory=list)


@dataclass
class SearchStats:
    """Summary of one search call."""

    total_results: int
    search_time: int
    charts_searched: int
    exact_matches: int
    partial_matches: int
    fuzzy_matches: int


@dataclass
class SearchResponse:
    results: List[SearchResult]
    stats: SearchStats


def levenshtein_distance(first: str, second: str) -> int:
    """Classic edit distance with unit insert/delete/substitute costs."""
    if len(first) < len(second):
        first, second = second, first
    previous = list(range(len(second) + 1))
    for i, first_char in enumerate(first, start=1):
        current = [i]
        for j, second_char in enumerate(second, start=1):
            if first_char == second_char:
                current.append(previous[j - 1])
            else:
                current.append(min(previous[j - 1], previous[j], current[j - 1]) + 1)
        previous = current
    return previous[-1]


def calculate_similarity(first: str, second: str) -> float:
    """Normalized Levenshtein similarity in [0, 1]. Two empty strings are identical."""
    max_length = max(len(first), len(second))
    if max_length == 0:
        return 1.0
    return (max_length - levenshtein_distance(first, second)) / max_length


def match_text(text: str, query: str, fuzzy: bool = False) -> Optional[SearchMatch]:
    """Match query against text: exact, then substring, then (optionally) fuzzy.

    The returned match has an empty field name; callers fill it in.
    """
    lower_text = normalize_text(text)
    lower_query = normalize_text(query)

    if lower_text == lower_query:
        return SearchMatch(field="", value=text, match_type=MatchType.EXACT, confidence=1.0)

    if lower_query in lower_text:
        confidence = len(lower_query) / len(lower_text)
        return SearchMatch(field="", value=text, match_type=MatchType.PARTIAL, confidence=confidence)

    if fuzzy:
        similarity = calculate_similarity(lower_text, lower_query)
        if similarity > FUZZY_THRESHOLD:
            return SearchMatch(field="", value=text, match_type=MatchType.FUZZY, confidence=similarity)

    return None


def chart_key(chart: ChartData) -> str:
    return f"{chart.source.tag}-{chart.chart_type}-{chart.date.isoformat()}"


class SearchEngine:
    """In-memory multi-field index over chart entries with ranked fuzzy search.

    Every query scans all entries of the charts that pass the source, chart
    type and date filters; there is no secondary index on those dimensions.
    Indexing is append-only: indexing the same chart twice duplicates its
    index buckets.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        """Initialize the engine.

        Args:
            clock: Callable returning the current time, used for recency boosts
        """
        self._clock = clock or utc_now
        self._index: Dict[str, List[ChartEntry]] = {}
        self._charts: Dict[str, ChartData] = {}

    def index_chart_data(self, charts: Iterable[ChartData]) -> None:
        """Add charts and their entries to the index."""
        indexed = 0
        for chart in charts:
            self._charts[chart_key(chart)] = chart

            for entry in chart.entries:
                self._add_to_index("title", normalize_text(entry.title), entry)
                self._add_to_index("artist", normalize_text(entry.artist), entry)
                if entry.album:
                    self._add_to_index("album", normalize_text(entry.album), entry)
                self._add_to_index("full", normalize_text(f"{entry.title} {entry.artist}"), entry)
                indexed += 1

        logger.debug(f"Indexed {indexed} entries ({len(self._charts)} charts in index)")

    def search(self, query: SearchQuery) -> SearchResponse:
        """Score every candidate entry against query and return them ranked."""
        start_time = time.time()
        results: List[SearchResult] = []
        charts_searched = set()
        exact_matches = 0
        partial_matches = 0
        fuzzy_matches = 0
        now = to_utc(self._clock())

        for chart in self._get_relevant_charts(query):
            charts_searched.add(f"{chart.source.tag}-{chart.chart_type}")

            for entry in chart.entries:
                result = self.score_entry(entry, chart, query, now=now)
                if result is None or result.score <= 0:
                    continue
                results.append(result)

                match_types = {m.match_type for m in result.matches}
                if MatchType.EXACT in match_types:
                    exact_matches += 1
                elif MatchType.PARTIAL in match_types:
                    partial_matches += 1
                elif MatchType.FUZZY in match_types:
                    fuzzy_matches += 1

        # list.sort is stable, so equal scores keep scan order
        results.sort(key=lambda r: r.score, reverse=True)

        if query.limit:
            results = results[:query.limit]

        stats = SearchStats(
            total_results=len(results),
            search_time=int((time.time() - start_time) * 1000),
            charts_searched=len(charts_searched),
            exact_matches=exact_matches,
            partial_matches=partial_matches,
            fuzzy_matches=fuzzy_matches,
        )
        return SearchResponse(results=results, stats=stats)

    def score_entry(self, entry: ChartEntry, chart: ChartData, query: SearchQuery,
                    now: Optional[datetime] = None) -> Optional[SearchResult]:
        """Score a single entry, or return None when a filter or strict match rejects it."""
        score = 0.0
        matches: List[SearchMatch] = []

        if query.rank_range and not query.rank_range.contains(entry.rank):
            return None

        if query.weeks_range and entry.weeks_on_chart is not None:
            if not query.weeks_range.contains(entry.weeks_on_chart):
                return None

        if query.peak_range and entry.peak_position is not None:
            if not query.peak_range.contains(entry.peak_position):
                return None

        if query.new_entries_only and entry.last_week is not None:
            return None

        if query.title:
            match = match_text(entry.title, query.title, query.fuzzy)
            if match:
                score += match.confidence * TITLE_WEIGHT
                matches.append(_with_field(match, "title"))
            elif not query.fuzzy:
                return None

        if query.artist:
            match = match_text(entry.artist, query.artist, query.fuzzy)
            if match:
                score += match.confidence * ARTIST_WEIGHT
                matches.append(_with_field(match, "artist"))
            elif not query.fuzzy and not query.title:
                # A title filter that already matched forgives an artist miss
                return None

        if query.album and entry.album:
            match = match_text(entry.album, query.album, query.fuzzy)
            if match:
                score += match.confidence * ALBUM_WEIGHT
                matches.append(_with_field(match, "album"))

        score += (101 - entry.rank) / 100

        now = to_utc(now or self._clock())
        days_since_chart = (now - to_utc(chart.date)).total_seconds() / 86400
        score += max(0.0, (RECENCY_WINDOW_DAYS - days_since_chart) / RECENCY_WINDOW_DAYS)

        if score == 0 and not matches:
            return None

        return SearchResult(entry=entry, chart_data=chart, score=score, matches=matches)

    def quick_search(self, term: str, field: str = "title", limit: int = 10) -> List[str]:
        """Autocomplete: distinct original-case field values containing term."""
        suggestions: Dict[str, None] = {}
        lower_term = normalize_text(term)
        prefix = f"{field}:"

        for key, entries in self._index.items():
            if key.startswith(prefix) and lower_term in key:
                for entry in entries:
                    value = _field_value(entry, field)
                    if lower_term in normalize_text(value):
                        suggestions[value] = None

            if len(suggestions) >= limit:
                break

        return list(suggestions)[:limit]

    def find_similar(self, entry: ChartEntry, limit: int = 10) -> List[SearchResult]:
        """Entries by a similar artist, excluding the entry itself."""
        query = SearchQuery(artist=entry.artist, fuzzy=True, limit=limit + 1)
        response = self.search(query)

        original_hash = create_entry_hash(entry)
        return [
            result for result in response.results
            if create_entry_hash(result.entry) != original_hash
        ][:limit]

    def clear_index(self) -> None:
        self._index.clear()
        self._charts.clear()

    def is_indexed(self, chart: ChartData) -> bool:
        """Whether a chart with the same source, type and date is in the index."""
        return chart_key(chart) in self._charts

    @property
    def indexed_charts(self) -> int:
        return len(self._charts)

    def _add_to_index(self, field: str, value: str, entry: ChartEntry) -> None:
        self._index.setdefault(f"{field}:{value}", []).append(entry)

    def _get_relevant_charts(self, query: SearchQuery) -> List[ChartData]:
        charts = []
        for chart in self._charts.values():
            if query.source and chart.source != query.source:
                continue
            if query.chart_type and chart.chart_type != query.chart_type:
                continue
            if query.date_range:
                chart_date = to_utc(chart.date)
                if chart_date < to_utc(query.date_range.start) or chart_date > to_utc(query.date_range.end):
                    continue
            charts.append(chart)
        return charts


def _with_field(match: SearchMatch, field_name: str) -> SearchMatch:
    return SearchMatch(
        field=field_name,
        value=match.value,
        match_type=match.match_type,
        confidence=match.confidence,
    )


def _field_value(entry: ChartEntry, field_name: str) -> str:
    if field_name == "title":
        return entry.title
    if field_name == "artist":
        return entry.artist
    return entry.album or ""
