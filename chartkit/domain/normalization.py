from __future__ import annotations

import re
from datetime import date as date_type, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Tuple, Union

if TYPE_CHECKING:
    from .entities import ChartEntry


_NON_ALNUM_PATTERN = re.compile(r"[^a-z0-9]")


def normalize_text(value: str) -> str:
    """Case-fold a display string for matching."""
    return (value or "").lower()


def create_entry_hash(entry: "ChartEntry") -> str:
    """Stable identity of an entry: lowercase title+artist, alphanumerics only."""
    combined = f"{entry.title}-{entry.artist}".lower()
    return _NON_ALNUM_PATTERN.sub("", combined)


def to_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_date(value: Union[str, datetime, date_type, None]) -> datetime:
    """Parse an ISO string, date or datetime. Invalid input falls back to now."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date_type):
        return datetime(value.year, value.month, value.day)
    if not value:
        return datetime.now()
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return datetime.now()


def format_date(value: datetime, fmt: str = "%Y-%m-%d") -> str:
    return value.strftime(fmt)


def day_key(value: datetime) -> str:
    """UTC calendar day of a datetime as YYYY-MM-DD."""
    return to_utc(value).date().isoformat()


def get_chart_week(value: datetime) -> Tuple[datetime, datetime]:
    """Monday-start week containing the given date: (start of Monday, end of Sunday)."""
    start = (value - timedelta(days=value.weekday())).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    end = (start + timedelta(days=6)).replace(
        hour=23, minute=59, second=59, microsecond=999999
    )
    return start, end
