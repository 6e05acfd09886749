"""
HTTP JSON fetch strategy.

Pulls records from a JSON API, e.g. ``GET {base_url}/users/{key}`` for
one record and ``GET {base_url}/users`` for the whole set. Implements the
on-demand, bulk and keyless fetcher interfaces so it can back any cache.
"""
import logging
from typing import Any, Dict, Hashable, Optional

import requests

from config.settings import settings
from .errors import FetchFailed

logger = logging.getLogger("record_cache.http_fetcher")


class HttpJsonFetcher:
    """
    Fetches JSON documents with ``requests``.

    ``item_path`` is formatted with ``key=...``; ``all_path`` must return a
    JSON object mapping keys to records. The request timeout is the only
    deadline applied to a fetch.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        item_path: str = "/{key}",
        all_path: str = "",
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        base = base_url or settings.http_base_url
        if not base:
            raise ValueError("base_url is required (or set RECORD_CACHE_HTTP_BASE_URL)")
        self.base_url = base.rstrip("/")
        self.item_path = item_path
        self.all_path = all_path
        self.headers = headers or {}
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self._session = session or requests.Session()

    def _get_json(self, path: str, key: Any = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.get(url, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.warning(f"GET {url} failed: {e}")
            raise FetchFailed(f"GET {url} failed: {e}", key=key) from e
        except ValueError as e:
            logger.warning(f"GET {url} returned invalid JSON: {e}")
            raise FetchFailed(f"GET {url} returned invalid JSON", key=key) from e

    def fetch_by_key(self, key: Hashable) -> Any:
        return self._get_json(self.item_path.format(key=key), key=key)

    def fetch_all(self) -> Dict[Hashable, Any]:
        data = self._get_json(self.all_path)
        if not isinstance(data, dict):
            raise FetchFailed(
                f"GET {self.base_url}{self.all_path} returned {type(data).__name__}, expected an object"
            )
        return data

    def fetch(self) -> Any:
        return self._get_json(self.all_path)
