import logging
import os
from typing import Dict, List, Optional
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Dict-backed persistent store, mostly useful for tests and short sessions."""

    def __init__(self):
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._items if k.startswith(prefix)]


class NullStore:
    """Store that keeps nothing."""

    def get_item(self, key: str) -> Optional[str]:
        return None

    def set_item(self, key: str, value: str) -> None:
        pass

    def remove_item(self, key: str) -> None:
        pass

    def keys(self, prefix: str = "") -> List[str]:
        return []


class JsonFileStore:
    """File-backed store: one file per key inside a directory."""

    SUFFIX = ".json"

    def __init__(self, directory: str):
        """Initialize file store.

        Args:
            directory: Directory to store item files in (created if missing)
        """
        self.directory = str(directory)
        os.makedirs(self.directory, exist_ok=True)

    def _get_item_path(self, key: str) -> str:
        filename = quote(key, safe="") + self.SUFFIX
        return os.path.join(self.directory, filename)

    def get_item(self, key: str) -> Optional[str]:
        path = self._get_item_path(key)
        if not os.path.exists(path):
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()

    def set_item(self, key: str, value: str) -> None:
        path = self._get_item_path(key)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(value)
        logger.debug(f"Stored item {key} in {path}")

    def remove_item(self, key: str) -> None:
        path = self._get_item_path(key)
        if os.path.exists(path):
            os.remove(path)
            logger.debug(f"Removed item {key}")

    def keys(self, prefix: str = "") -> List[str]:
        if not os.path.isdir(self.directory):
            return []
        result = []
        for filename in sorted(os.listdir(self.directory)):
            if not filename.endswith(self.SUFFIX):
                continue
            key = unquote(filename[:-len(self.SUFFIX)])
            if key.startswith(prefix):
                result.append(key)
        return result
