"""
Redis-backed cache driver.

All entries of one cache live in a single Redis hash, with keys and values
pickled (see codec.py).
"""
import logging
from typing import Any, Dict, Hashable, Optional

import redis

from config.settings import settings
from ..errors import StorageUnavailable
from .base import CacheDriver
from .codec import DECODE_ERRORS, ENCODE_ERRORS, decode, encode

logger = logging.getLogger("record_cache.drivers.redis")


def connect_redis(
    url: Optional[str] = None,
    socket_timeout: Optional[float] = None,
    verify: bool = False,
) -> redis.Redis:
    """
    Build a Redis client from settings.

    Args:
        url: Redis URL (default: settings.redis_url)
        socket_timeout: Connect and command timeout in seconds
        verify: Ping the server and raise if it is unreachable

    Raises:
        StorageUnavailable: verify=True and the server did not answer
    """
    timeout = socket_timeout if socket_timeout is not None else settings.redis_socket_timeout_seconds
    client = redis.Redis.from_url(
        url or settings.redis_url,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
    )
    if verify:
        try:
            client.ping()
        except redis.RedisError as e:
            raise StorageUnavailable(f"Redis at {url or settings.redis_url} unreachable: {e}") from e
    return client


class RedisCacheDriver(CacheDriver):
    """
    Stores entries in the Redis hash ``hash_key``.

    The client must return raw bytes (``decode_responses=False``).
    """

    def __init__(self, client: redis.Redis, hash_key: Optional[str] = None):
        self._client = client
        self.hash_key = hash_key or settings.redis_hash_key

    @classmethod
    def from_settings(cls, hash_key: Optional[str] = None, verify: bool = False) -> "RedisCacheDriver":
        return cls(connect_redis(verify=verify), hash_key)

    def has(self, key: Hashable) -> bool:
        try:
            return bool(self._client.hexists(self.hash_key, encode(key)))
        except (redis.RedisError, *ENCODE_ERRORS) as e:
            logger.warning(f"HEXISTS {self.hash_key} failed: {e}")
            return False

    def get(self, key: Hashable) -> Optional[Any]:
        try:
            raw = self._client.hget(self.hash_key, encode(key))
        except (redis.RedisError, *ENCODE_ERRORS) as e:
            logger.warning(f"HGET {self.hash_key} failed: {e}")
            return None
        if raw is None:
            return None
        try:
            return decode(raw)
        except DECODE_ERRORS as e:
            logger.warning(f"Undecodable value in {self.hash_key}: {e}")
            return None

    def all(self) -> Dict[Hashable, Any]:
        try:
            raw_items = self._client.hgetall(self.hash_key)
        except redis.RedisError as e:
            logger.warning(f"HGETALL {self.hash_key} failed: {e}")
            return {}

        items = {}
        for raw_key, raw_value in raw_items.items():
            try:
                items[decode(raw_key)] = decode(raw_value)
            except DECODE_ERRORS as e:
                logger.debug(f"Skipping undecodable field in {self.hash_key}: {e}")
        return items

    def set(self, key: Hashable, value: Any) -> bool:
        if value is None:
            return False
        try:
            self._client.hset(self.hash_key, encode(key), encode(value))
        except (redis.RedisError, *ENCODE_ERRORS) as e:
            logger.warning(f"HSET {self.hash_key} failed: {e}")
            return False
        return True

    def delete(self, key: Hashable) -> bool:
        try:
            self._client.hdel(self.hash_key, encode(key))
        except (redis.RedisError, *ENCODE_ERRORS) as e:
            logger.warning(f"HDEL {self.hash_key} failed: {e}")
            return False
        return True

    def clear(self) -> bool:
        try:
            self._client.delete(self.hash_key)
        except redis.RedisError as e:
            logger.warning(f"DEL {self.hash_key} failed: {e}")
            return False
        return True
