"""
Read-only data store access.

Collectors never talk to a database driver directly. They go through
DataStore, which exposes one query shape: rows of a single table, filtered
by user id, optionally time-ranged, ordered and row-limited.

SqlDataStore implements it with SQLAlchemy Core against the BaaS Postgres
(or any SQLAlchemy URL). Tables are reflected lazily and cached. Queries run
in a worker thread so the event loop only suspends at this I/O boundary.
"""
import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import MetaData, Table, create_engine, event, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from coach_brain.core.config import settings
from coach_brain.core.exceptions import DataStoreError

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class DataStore(ABC):
    """
    Read interface over the per-domain tables.

    Implementations must be safe to call concurrently from many collectors.
    """

    @abstractmethod
    async def fetch_rows(
        self,
        table: str,
        user_id: str,
        *,
        columns: Optional[Sequence[str]] = None,
        filters: Optional[Dict[str, Any]] = None,
        since: Optional[datetime] = None,
        since_column: str = "created_at",
        until: Optional[datetime] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Row]:
        """Return rows of `table` belonging to `user_id`."""

    async def fetch_one(self, table: str, user_id: str, **kwargs) -> Optional[Row]:
        """Return the first matching row, or None."""
        kwargs["limit"] = 1
        rows = await self.fetch_rows(table, user_id, **kwargs)
        return rows[0] if rows else None


class SqlDataStore(DataStore):
    """DataStore backed by a SQLAlchemy engine."""

    def __init__(self, engine: Engine, user_column: str = "user_id"):
        self.engine = engine
        self.user_column = user_column
        self._metadata = MetaData()
        self._tables: Dict[str, Table] = {}
        self._lock = threading.Lock()

    def _table(self, name: str) -> Table:
        with self._lock:
            table = self._tables.get(name)
            if table is None:
                table = Table(name, self._metadata, autoload_with=self.engine)
                self._tables[name] = table
            return table

    def _fetch_rows_sync(
        self,
        table_name: str,
        user_id: str,
        columns: Optional[Sequence[str]],
        filters: Optional[Dict[str, Any]],
        since: Optional[datetime],
        since_column: str,
        until: Optional[datetime],
        order_by: Optional[str],
        descending: bool,
        limit: Optional[int],
    ) -> List[Row]:
        table = self._table(table_name)
        selected = [table.c[name] for name in columns] if columns else [table]

        stmt = select(*selected).where(table.c[self.user_column] == user_id)
        for name, value in (filters or {}).items():
            stmt = stmt.where(table.c[name] == value)
        if since is not None:
            stmt = stmt.where(table.c[since_column] >= since)
        if until is not None:
            stmt = stmt.where(table.c[since_column] < until)
        if order_by:
            column = table.c[order_by]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit:
            stmt = stmt.limit(limit)

        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(stmt)]

    async def fetch_rows(
        self,
        table: str,
        user_id: str,
        *,
        columns: Optional[Sequence[str]] = None,
        filters: Optional[Dict[str, Any]] = None,
        since: Optional[datetime] = None,
        since_column: str = "created_at",
        until: Optional[datetime] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Row]:
        try:
            return await asyncio.to_thread(
                self._fetch_rows_sync,
                table, user_id, columns, filters, since, since_column,
                until, order_by, descending, limit,
            )
        except (SQLAlchemyError, KeyError) as e:
            logger.warning(f"Data store read failed for {table} (user {user_id}): {e}")
            raise DataStoreError(table, e) from e


def create_store_engine(url: Optional[str] = None) -> Engine:
    """Create the pooled engine for the read replica."""
    url = url or settings.DATABASE_URL
    kwargs: Dict[str, Any] = {"pool_pre_ping": True, "echo": settings.DEBUG}
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
        )
    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        logger.debug("New data store connection established")

    return engine


def check_store_connection(engine: Engine) -> bool:
    """Return True if the data store answers a trivial query."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Data store connection check failed: {e}")
        return False
