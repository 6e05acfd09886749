"""
Record Cache - ops endpoints

Exposes health and statistics for caches registered in this process.
Mount ``app`` in an existing ASGI service or run it standalone with
``python -m record_cache.main``.
"""
import logging
import threading
from typing import Any, Dict, Optional, Union

from fastapi import FastAPI, HTTPException

from config.settings import settings
from record_cache import __version__
from record_cache.cache import KeylessRecordCache, RecordCache

APP_NAME = "Record Cache"

app = FastAPI(
    title=APP_NAME,
    description="Health and statistics for read-through record caches",
    version=__version__,
)

_caches: Dict[str, Union[RecordCache, KeylessRecordCache]] = {}
_caches_lock = threading.Lock()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging from settings.log_level."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def register_cache(name: str, cache: Union[RecordCache, KeylessRecordCache]) -> None:
    """Make a cache visible under /cache/stats."""
    with _caches_lock:
        _caches[name] = cache


def unregister_cache(name: str) -> bool:
    with _caches_lock:
        return _caches.pop(name, None) is not None


@app.get("/health")
def health_check():
    """Health check endpoint."""
    with _caches_lock:
        count = len(_caches)
    return {"status": "ok", "caches": count}


@app.get("/version")
def version_info():
    return {"name": APP_NAME, "version": __version__}


@app.get("/cache/stats")
def cache_stats() -> Dict[str, Any]:
    """Statistics for every registered cache, keyed by registration name."""
    with _caches_lock:
        caches = dict(_caches)
    return {name: cache.get_stats() for name, cache in caches.items()}


@app.get("/cache/stats/{name}")
def cache_stats_for(name: str) -> Dict[str, Any]:
    with _caches_lock:
        cache = _caches.get(name)
    if cache is None:
        raise HTTPException(status_code=404, detail=f"No cache registered as '{name}'")
    return cache.get_stats()


if __name__ == "__main__":
    import uvicorn

    configure_logging()
    uvicorn.run(app, host="127.0.0.1", port=8000)
