import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from chartkit.domain.entities import ChartData
from chartkit.domain.errors import CacheError
from chartkit.domain.ports import PersistentStore

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "chartkit-"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class CacheOptions:
    """Cache configuration. ttl is in milliseconds."""

    ttl: int = 60 * 60 * 1000
    max_size: int = 100
    persistent: bool = False


@dataclass
class CacheItem:
    """A cached chart snapshot with its insertion time and lifetime (ms)."""

    data: ChartData
    timestamp: int
    ttl: int

    def to_json(self) -> Dict[str, Any]:
        return {
            "data": self.data.to_json(),
            "timestamp": self.timestamp,
            "ttl": self.ttl,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "CacheItem":
        return cls(
            data=ChartData.from_json(data["data"]),
            timestamp=int(data["timestamp"]),
            ttl=int(data["ttl"]),
        )


class ChartCache:
    """TTL cache of chart snapshots with optional write-through persistence.

    Expiry is checked lazily when an item is read; nothing sweeps in the
    background. When the cache is full the item with the oldest insertion
    timestamp is evicted, regardless of how recently it was read.
    """

    def __init__(self,
                 options: Optional[CacheOptions] = None,
                 store: Optional[PersistentStore] = None,
                 clock: Optional[Callable[[], int]] = None):
        """Initialize the cache.

        Args:
            options: Cache options, defaults to a one hour in-memory cache
            store: Persistent store used when options.persistent is set.
                Defaults to a JSON file store in the configured cache directory.
            clock: Callable returning the current time in epoch milliseconds
        """
        self.options = options or CacheOptions()
        self._clock = clock or _now_ms
        self._memory: Dict[str, CacheItem] = {}
        self._store = store

        if self.options.persistent:
            if self._store is None:
                from chartkit.crosscutting.config import get_config_manager
                from chartkit.infrastructure.stores import JsonFileStore
                self._store = JsonFileStore(str(get_config_manager().cache_dir))
            self._load_all_from_store()

    def set(self, key: str, data: ChartData) -> None:
        """Store a chart snapshot under key."""
        try:
            item = CacheItem(data=data, timestamp=self._clock(), ttl=self.options.ttl)

            if len(self._memory) >= self.options.max_size:
                self._evict_oldest()

            self._memory[key] = item
        except Exception as e:
            raise CacheError(f"Failed to set cache item: {e}") from e

        if self.options.persistent:
            self._save_to_store(key, item)

    def get(self, key: str) -> Optional[ChartData]:
        """Return the cached snapshot for key, or None when missing or expired."""
        try:
            item = self._memory.get(key)

            if item is None and self.options.persistent:
                item = self._load_from_store(key)
                if item is not None:
                    self._memory[key] = item

            if item is None:
                return None

            if self._is_expired(item):
                self.delete(key)
                return None

            return item.data
        except Exception as e:
            logger.warning(f"Failed to get cache item {key}: {e}")
            return None

    def delete(self, key: str) -> None:
        """Remove key from memory and the persistent store. Missing keys are ignored."""
        self._memory.pop(key, None)

        if self.options.persistent:
            try:
                self._store.remove_item(STORAGE_PREFIX + key)
            except Exception as e:
                logger.warning(f"Failed to remove {key} from persistent store: {e}")

    def clear_by_pattern(self, pattern: str) -> None:
        """Delete every key containing pattern as a plain substring."""
        keys_to_delete = [key for key in self._memory if pattern in key]
        for key in keys_to_delete:
            self.delete(key)

    def clear(self) -> None:
        """Remove all items."""
        self._memory.clear()

        if self.options.persistent:
            try:
                for storage_key in self._store.keys(STORAGE_PREFIX):
                    self._store.remove_item(storage_key)
            except Exception as e:
                logger.warning(f"Failed to clear persistent store: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Snapshot of cache contents, classified with the same expiry test as get()."""
        expired = 0
        valid = 0
        for item in self._memory.values():
            if self._is_expired(item):
                expired += 1
            else:
                valid += 1

        return {
            "totalItems": len(self._memory),
            "validItems": valid,
            "expiredItems": expired,
            "maxSize": self.options.max_size,
            "persistent": self.options.persistent,
            "ttl": self.options.ttl,
        }

    def __len__(self) -> int:
        return len(self._memory)

    def __contains__(self, key: str) -> bool:
        return key in self._memory

    def _is_expired(self, item: CacheItem) -> bool:
        return self._clock() - item.timestamp > item.ttl

    def _evict_oldest(self) -> None:
        if not self._memory:
            return
        oldest_key = min(self._memory, key=lambda k: self._memory[k].timestamp)
        del self._memory[oldest_key]
        logger.debug(f"Evicted oldest cache item {oldest_key}")

    def _save_to_store(self, key: str, item: CacheItem) -> None:
        try:
            self._store.set_item(STORAGE_PREFIX + key, json.dumps(item.to_json(), ensure_ascii=False))
        except Exception as e:
            logger.warning(f"Failed to save {key} to persistent store: {e}")

    def _load_from_store(self, key: str) -> Optional[CacheItem]:
        try:
            stored = self._store.get_item(STORAGE_PREFIX + key)
            if stored is None:
                return None
            return CacheItem.from_json(json.loads(stored))
        except Exception as e:
            logger.warning(f"Failed to load {key} from persistent store: {e}")
            return None

    def _load_all_from_store(self) -> None:
        try:
            storage_keys = self._store.keys(STORAGE_PREFIX)
        except Exception as e:
            logger.warning(f"Failed to list persistent store: {e}")
            return

        loaded = 0
        for storage_key in storage_keys:
            key = storage_key[len(STORAGE_PREFIX):]
            item = self._load_from_store(key)
            if item is not None and not self._is_expired(item):
                self._memory[key] = item
                loaded += 1

        if loaded:
            logger.info(f"Loaded {loaded} cached charts from persistent store")
