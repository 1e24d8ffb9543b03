from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date as date_type, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .normalization import parse_date


MetadataValue = Union[str, int, float, bool, None, List["MetadataValue"], Dict[str, "MetadataValue"]]
Metadata = Dict[str, MetadataValue]


def _coerce_metadata_value(value: Any) -> MetadataValue:
    """Convert an arbitrary provider value into a JSON-safe metadata value."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (datetime, date_type)):
        return value.isoformat()
    if isinstance(value, Enum):
        return _coerce_metadata_value(value.value)
    if isinstance(value, Mapping):
        return {str(k): _coerce_metadata_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_coerce_metadata_value(v) for v in value]
    return str(value)


def coerce_metadata(mapping: Optional[Mapping[str, Any]]) -> Metadata:
    """Build a metadata bag from provider extras. None values for keys are kept."""
    if not mapping:
        return {}
    return {str(k): _coerce_metadata_value(v) for k, v in mapping.items()}


class SourceKind(str, Enum):
    """Built-in chart sources."""

    BILLBOARD = "billboard"
    LASTFM = "lastfm"
    CUSTOM = "custom"


@dataclass(frozen=True)
class ChartSource:
    """Origin tag of chart data.

    Built-in providers use a fixed kind; any other provider is a CUSTOM
    source carrying its own identifier, e.g. ``ChartSource.custom("yandex")``.
    """

    kind: SourceKind
    name: str = ""

    @classmethod
    def custom(cls, name: str = "") -> "ChartSource":
        return cls(SourceKind.CUSTOM, name.strip().lower())

    @classmethod
    def parse(cls, tag: Union[str, "ChartSource"]) -> "ChartSource":
        if isinstance(tag, ChartSource):
            return tag
        value = (tag or "").strip().lower()
        for kind in (SourceKind.BILLBOARD, SourceKind.LASTFM):
            if value == kind.value:
                return cls(kind)
        if value in ("", SourceKind.CUSTOM.value):
            return cls(SourceKind.CUSTOM)
        return cls.custom(value)

    @property
    def tag(self) -> str:
        if self.kind is SourceKind.CUSTOM and self.name:
            return self.name
        return self.kind.value

    @property
    def is_custom(self) -> bool:
        return self.kind is SourceKind.CUSTOM

    def __str__(self) -> str:
        return self.tag


ChartSource.BILLBOARD = ChartSource(SourceKind.BILLBOARD)
ChartSource.LASTFM = ChartSource(SourceKind.LASTFM)
ChartSource.CUSTOM = ChartSource(SourceKind.CUSTOM)


@dataclass(frozen=True)
class ChartEntry:
    """One ranked item on a chart."""

    rank: int
    title: str
    artist: str
    chart_date: datetime
    source: ChartSource
    album: Optional[str] = None
    label: Optional[str] = None
    last_week: Optional[int] = None
    peak_position: Optional[int] = None
    weeks_on_chart: Optional[int] = None
    metadata: Metadata = field(default_factory=dict)

    def to_json(self) -> Dict[str, Any]:
        """Serialize entry to JSON."""
        return {
            "rank": self.rank,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "label": self.label,
            "lastWeek": self.last_week,
            "peakPosition": self.peak_position,
            "weeksOnChart": self.weeks_on_chart,
            "chartDate": self.chart_date.isoformat(),
            "source": self.source.tag,
            "metadata": self.metadata,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ChartEntry":
        """Deserialize entry from JSON."""
        return cls(
            rank=int(data["rank"]),
            title=data["title"],
            artist=data["artist"],
            album=data.get("album"),
            label=data.get("label"),
            last_week=data.get("lastWeek"),
            peak_position=data.get("peakPosition"),
            weeks_on_chart=data.get("weeksOnChart"),
            chart_date=parse_date(data["chartDate"]),
            source=ChartSource.parse(data.get("source", "")),
            metadata=coerce_metadata(data.get("metadata")),
        )


@dataclass(frozen=True)
class ChartData:
    """One chart snapshot. Entries keep the provider's rank order."""

    chart_type: str
    date: datetime
    entries: Tuple[ChartEntry, ...]
    source: ChartSource
    total_entries: int = 0
    metadata: Metadata = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.entries, tuple):
            object.__setattr__(self, 'entries', tuple(self.entries))

    def to_json(self) -> Dict[str, Any]:
        """Serialize chart to JSON."""
        return {
            "chartType": self.chart_type,
            "date": self.date.isoformat(),
            "entries": [entry.to_json() for entry in self.entries],
            "source": self.source.tag,
            "totalEntries": self.total_entries,
            "metadata": self.metadata,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ChartData":
        """Deserialize chart from JSON."""
        return cls(
            chart_type=data["chartType"],
            date=parse_date(data["date"]),
            entries=tuple(ChartEntry.from_json(e) for e in data.get("entries", [])),
            source=ChartSource.parse(data.get("source", "")),
            total_entries=int(data.get("totalEntries", 0)),
            metadata=coerce_metadata(data.get("metadata")),
        )


@dataclass(frozen=True)
class DateRange:
    """Inclusive date range."""

    start: datetime
    end: datetime


@dataclass(frozen=True)
class HistoricalChartData:
    """Snapshots of one chart over a date range."""

    chart_type: str
    date_range: DateRange
    data: List[ChartData]
    source: ChartSource


@dataclass
class FetchOptions:
    """Options for a single chart fetch."""

    date: Optional[datetime] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    use_cache: bool = True
    force_refresh: bool = False


class Trend(str, Enum):
    """Movement of an entry between two snapshots."""

    UP = "up"
    DOWN = "down"
    STABLE = "stable"
    NEW = "new"


@dataclass(frozen=True)
class TrendData:
    """Trend of one entry relative to the previous snapshot."""

    entry: ChartEntry
    trend: Trend
    position_change: int
    weekly_data: List[Tuple[datetime, int]] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "entry": self.entry.to_json(),
            "trend": self.trend.value,
            "positionChange": self.position_change,
            "weeklyData": [
                {"date": point_date.isoformat(), "position": position}
                for point_date, position in self.weekly_data
            ],
        }


@dataclass
class ChartAnalytics:
    """Comparison summary between two snapshots of a chart."""

    total_entries: int
    new_entries: int = 0
    dropped_entries: int = 0
    trends: List[TrendData] = field(default_factory=list)
    climbers: List[TrendData] = field(default_factory=list)
    fallers: List[TrendData] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "totalEntries": self.total_entries,
            "newEntries": self.new_entries,
            "droppedEntries": self.dropped_entries,
            "trends": [t.to_json() for t in self.trends],
            "topMovers": {
                "climbers": [t.to_json() for t in self.climbers],
                "fallers": [t.to_json() for t in self.fallers],
            },
        }
