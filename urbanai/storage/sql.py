"""SQL-backed key-value store (SQLite file by default).

Keeps one row per key in a two-column table. Any SQLAlchemy-supported database
works; the default URL points at a local SQLite file so cached data survives
process restarts without extra infrastructure.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, delete, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from urbanai.errors import PersistenceError
from urbanai.storage.base import KeyValueStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="storage/sql_store")

DEFAULT_TABLE = "urbanai_kv_store"


class SqlKeyValueStore(KeyValueStore):
    """Persist key/value pairs through a SQLAlchemy engine."""

    def __init__(self, engine: Engine, *, table_name: str = DEFAULT_TABLE) -> None:
        """Bind to an engine and create the backing table if needed."""
        self.engine = engine
        self._metadata = MetaData()
        self.table = Table(
            table_name,
            self._metadata,
            Column("key", String(255), primary_key=True),
            Column("value", Text, nullable=False),
        )
        try:
            self._metadata.create_all(engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"could not create table '{table_name}'") from exc
        logger.debug("Initialized SqlKeyValueStore", extra={"table": table_name})

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "SqlKeyValueStore":
        """Create an engine from a URL and build the store."""
        engine = create_engine(database_url, future=True)
        return cls(engine, **kwargs)

    def get(self, key: str) -> Optional[str]:
        stmt = select(self.table.c.value).where(self.table.c.key == key)
        try:
            with self.engine.connect() as conn:
                row = conn.execute(stmt).first()
        except SQLAlchemyError as exc:
            logger.error("Failed to read key from database: %s", exc, extra={"key": key})
            raise PersistenceError(f"database read failed for '{key}'") from exc
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(self.table).where(self.table.c.key == key))
                conn.execute(insert(self.table).values(key=key, value=value))
        except SQLAlchemyError as exc:
            logger.error("Failed to write key to database: %s", exc, extra={"key": key})
            raise PersistenceError(f"database write failed for '{key}'") from exc

    def remove(self, key: str) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(self.table).where(self.table.c.key == key))
        except SQLAlchemyError as exc:
            logger.error("Failed to delete key from database: %s", exc, extra={"key": key})
            raise PersistenceError(f"database delete failed for '{key}'") from exc
