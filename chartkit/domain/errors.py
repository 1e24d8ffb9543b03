from typing import Optional

from .entities import ChartSource


class ChartKitError(Exception):
    """Base error carrying a machine-readable code and optional chart source."""

    def __init__(self, message: str, code: str, source: Optional[ChartSource] = None) -> None:
        super().__init__(message)
        self.code = code
        self.source = source


class APIError(ChartKitError):
    """Provider request failed. status_code mirrors the HTTP status where one exists."""

    def __init__(self, message: str, status_code: int, source: ChartSource) -> None:
        super().__init__(message, "API_ERROR", source)
        self.status_code = status_code


class RateLimited(APIError):
    """Provider rate limited the request. Includes suggested wait time in milliseconds."""

    def __init__(self, source: ChartSource, retry_after_ms: int = 1000,
                 message: str = "Rate limited") -> None:
        super().__init__(message, 429, source)
        self.retry_after_ms = retry_after_ms


class CacheError(ChartKitError):
    """In-memory cache operation failed unexpectedly."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "CACHE_ERROR")
