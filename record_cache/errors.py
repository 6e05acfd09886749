"""
Exception types raised by the record cache.
"""


class RecordCacheError(Exception):
    """Base class for all record cache errors."""


class FetchFailed(RecordCacheError):
    """The fetch origin could not produce a value."""

    def __init__(self, message: str, key=None):
        super().__init__(message)
        self.key = key


class NoFetcherConfigured(RecordCacheError):
    """A refresh was needed but no on-demand fetcher is attached."""

    def __init__(self, key=None):
        super().__init__(
            f"value for {key!r} not in cache and no on-demand fetcher is configured"
        )
        self.key = key


class RecordNotFound(RecordCacheError, KeyError):
    """The key is still absent from storage after a successful refresh."""

    def __init__(self, key=None):
        super().__init__(f"record {key!r} not in cache after refresh")
        self.key = key

    def __str__(self) -> str:
        return self.args[0]


class StorageUnavailable(RecordCacheError):
    """A storage backend could not be reached while connecting."""
