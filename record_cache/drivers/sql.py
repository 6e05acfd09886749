"""
SQL cache driver using SQLAlchemy.

One table can hold several caches; each driver only sees rows of its
own namespace. Keys and values are stored pickled, with the SHA-256 of
the pickled key as the lookup column.
"""
import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Hashable, Optional

from sqlalchemy import (
    Column, DateTime, LargeBinary, MetaData, String, Table,
    create_engine, delete, select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from config.settings import settings
from ..errors import StorageUnavailable
from .base import CacheDriver
from .codec import DECODE_ERRORS, ENCODE_ERRORS, decode, encode

logger = logging.getLogger("record_cache.drivers.sql")


def create_cache_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create an engine suitable for concurrent cache access.

    SQLite connections are shared across threads; in-memory SQLite uses a
    single static connection so every thread sees the same database.
    """
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return create_engine(url, **options)
    return create_engine(url, pool_pre_ping=True)


def _key_hash(raw_key: bytes) -> str:
    return hashlib.sha256(raw_key).hexdigest()


class SQLCacheDriver(CacheDriver):
    """Stores entries as rows of ``table_name`` scoped by ``namespace``."""

    def __init__(
        self,
        engine: Optional[Engine] = None,
        namespace: str = "default",
        table_name: Optional[str] = None,
    ):
        self._engine = engine or create_cache_engine()
        self.namespace = namespace
        self._metadata = MetaData()
        self._table = Table(
            table_name or settings.sql_table_name,
            self._metadata,
            Column("namespace", String(128), primary_key=True),
            Column("key_hash", String(64), primary_key=True),
            Column("key_blob", LargeBinary, nullable=False),
            Column("value_blob", LargeBinary, nullable=False),
            Column("updated_at", DateTime(timezone=True), nullable=False),
        )
        try:
            self._metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Could not prepare cache table: {e}") from e

    def _where_key(self, raw_key: bytes):
        return (
            (self._table.c.namespace == self.namespace)
            & (self._table.c.key_hash == _key_hash(raw_key))
        )

    def has(self, key: Hashable) -> bool:
        try:
            stmt = select(self._table.c.key_hash).where(self._where_key(encode(key)))
            with self._engine.connect() as conn:
                return conn.execute(stmt).first() is not None
        except (SQLAlchemyError, *ENCODE_ERRORS) as e:
            logger.warning(f"has() failed for namespace {self.namespace}: {e}")
            return False

    def get(self, key: Hashable) -> Optional[Any]:
        try:
            stmt = select(self._table.c.value_blob).where(self._where_key(encode(key)))
            with self._engine.connect() as conn:
                row = conn.execute(stmt).first()
        except (SQLAlchemyError, *ENCODE_ERRORS) as e:
            logger.warning(f"get() failed for namespace {self.namespace}: {e}")
            return None
        if row is None:
            return None
        try:
            return decode(row.value_blob)
        except DECODE_ERRORS as e:
            logger.warning(f"Undecodable value in namespace {self.namespace}: {e}")
            return None

    def all(self) -> Dict[Hashable, Any]:
        stmt = select(self._table.c.key_blob, self._table.c.value_blob).where(
            self._table.c.namespace == self.namespace
        )
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(stmt).all()
        except SQLAlchemyError as e:
            logger.warning(f"all() failed for namespace {self.namespace}: {e}")
            return {}

        items = {}
        for row in rows:
            try:
                items[decode(row.key_blob)] = decode(row.value_blob)
            except DECODE_ERRORS as e:
                logger.debug(f"Skipping undecodable row in namespace {self.namespace}: {e}")
        return items

    def set(self, key: Hashable, value: Any) -> bool:
        if value is None:
            return False
        try:
            raw_key = encode(key)
            raw_value = encode(value)
            with self._engine.begin() as conn:
                conn.execute(delete(self._table).where(self._where_key(raw_key)))
                conn.execute(
                    self._table.insert().values(
                        namespace=self.namespace,
                        key_hash=_key_hash(raw_key),
                        key_blob=raw_key,
                        value_blob=raw_value,
                        updated_at=datetime.now(timezone.utc),
                    )
                )
        except (SQLAlchemyError, *ENCODE_ERRORS) as e:
            logger.warning(f"set() failed for namespace {self.namespace}: {e}")
            return False
        return True

    def delete(self, key: Hashable) -> bool:
        try:
            with self._engine.begin() as conn:
                conn.execute(delete(self._table).where(self._where_key(encode(key))))
        except (SQLAlchemyError, *ENCODE_ERRORS) as e:
            logger.warning(f"delete() failed for namespace {self.namespace}: {e}")
            return False
        return True

    def clear(self) -> bool:
        try:
            with self._engine.begin() as conn:
                conn.execute(delete(self._table).where(self._table.c.namespace == self.namespace))
        except SQLAlchemyError as e:
            logger.warning(f"clear() failed for namespace {self.namespace}: {e}")
            return False
        return True
