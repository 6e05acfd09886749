"""
In-process cache driver.
"""
import threading
from typing import Any, Dict, Hashable, Optional

from .base import CacheDriver


class MemoryCacheDriver(CacheDriver):
    """Dict-backed store; thread-safe, ``all()`` returns a copy."""

    def __init__(self, initial: Optional[Dict[Hashable, Any]] = None):
        self._items: Dict[Hashable, Any] = dict(initial or {})
        self._lock = threading.RLock()

    def has(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._items

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            return self._items.get(key)

    def all(self) -> Dict[Hashable, Any]:
        with self._lock:
            return dict(self._items)

    def set(self, key: Hashable, value: Any) -> bool:
        if value is None:
            return False
        with self._lock:
            self._items[key] = value
            return key in self._items

    def delete(self, key: Hashable) -> bool:
        with self._lock:
            self._items.pop(key, None)
            return key not in self._items

    def clear(self) -> bool:
        with self._lock:
            self._items.clear()
            return not self._items
