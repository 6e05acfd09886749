"""
Storage contract every cache backend implements.

Backends never raise through this interface: transport or decoding
failures become ``None`` from ``get`` and ``False`` from writes, and the
backend logs them. Networked backends apply their own timeouts.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Hashable, Optional


class CacheDriver(ABC):
    """
    Minimal key-value store used by RecordCache.

    ``None`` is reserved as the "not found" result of ``get``; it is never
    stored as a value.
    """

    @abstractmethod
    def has(self, key: Hashable) -> bool:
        """True if ``key`` is present."""
        pass

    @abstractmethod
    def get(self, key: Hashable) -> Optional[Any]:
        """Stored value for ``key``, or None when absent or unreadable."""
        pass

    @abstractmethod
    def all(self) -> Dict[Hashable, Any]:
        """
        Snapshot of every entry.

        Callers must treat the result as read-only.
        """
        pass

    @abstractmethod
    def set(self, key: Hashable, value: Any) -> bool:
        """Store ``value`` under ``key``, overwriting. Returns success."""
        pass

    @abstractmethod
    def delete(self, key: Hashable) -> bool:
        """Remove ``key``. Removing a missing key counts as success."""
        pass

    @abstractmethod
    def clear(self) -> bool:
        """Remove everything. Returns True when the store is now empty."""
        pass

    def __len__(self) -> int:
        return len(self.all())

    def __contains__(self, key: Hashable) -> bool:
        return self.has(key)
