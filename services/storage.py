"""
Storage Service Layer
Record-oriented access to the catalog database: lookups, inserts, patches,
keyed bulk upserts and counts. Every call is bounded by STORE_TIMEOUT_SECONDS
and driver failures are translated into StoreUnavailableError / StoreWriteError.
"""
from sqlalchemy import select, func, update, desc
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, TypeVar
import asyncio
import logging

from database import AsyncSessionLocal, Base
from services.errors import StoreUnavailableError, StoreWriteError
from settings import STORE_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

T = TypeVar("T")

Record = Dict[str, Any]
Predicate = Mapping[str, Any]


class StorageService:
    """Storage service providing database operations"""

    # Columns a keyed upsert must never overwrite on conflict
    PRESERVED_ON_CONFLICT = ("created_at",)

    def __init__(self, session_factory=None, timeout_seconds: Optional[float] = None):
        self._session_factory = session_factory or AsyncSessionLocal
        self.timeout_seconds = timeout_seconds or STORE_TIMEOUT_SECONDS

    def get_session(self):
        """Get database session context manager"""
        return self._session_factory()

    # ---------- helpers ----------

    def _table_column_names(self, model) -> set:
        return {c.name for c in model.__table__.columns}

    def _filter_columns(self, model, row: Mapping[str, Any]) -> Record:
        """Drop keys that don't exist on the SQLAlchemy table (prevents invalid kw errors)."""
        allowed = self._table_column_names(model)
        return {k: v for k, v in row.items() if k in allowed}

    def _where(self, model, predicate: Optional[Predicate]) -> list:
        clauses = []
        for column, value in (predicate or {}).items():
            attr = getattr(model, column, None)
            if attr is None:
                raise ValueError(f"{model.__tablename__} has no column {column!r}")
            clauses.append(attr.is_(None) if value is None else attr == value)
        return clauses

    def _as_record(self, obj: Optional[Base]) -> Optional[Record]:
        if obj is None:
            return None
        return {c.name: getattr(obj, c.key) for c in obj.__table__.columns}

    def _overwrite_all_columns(self, model, stmt, keys: Iterable[str]):
        """Helper to update every supplied column except primary key(s) and creation stamps in UPSERT operations"""
        table = model.__table__
        pks = {c.name for c in table.primary_key.columns}
        supplied = set(keys)
        return {
            c.name: stmt.excluded[c.name]
            for c in table.columns
            if c.name in supplied and c.name not in pks and c.name not in self.PRESERVED_ON_CONFLICT
        }

    def _insert_for(self, session, model):
        dialect = session.bind.dialect.name
        if dialect == "postgresql":
            return pg_insert(model)
        if dialect == "sqlite":
            return sqlite_insert(model)
        raise StoreWriteError(f"Keyed upsert is not supported on dialect {dialect!r}", operation="bulk_upsert")

    async def _run(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run one store round-trip under the configured timeout."""
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError(
                f"{operation} timed out after {self.timeout_seconds:g}s", operation=operation
            ) from exc
        except (OperationalError, InterfaceError) as exc:
            raise StoreUnavailableError(f"{operation} failed: {exc.orig or exc}", operation=operation) from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                raise StoreUnavailableError(f"{operation} lost its connection: {exc.orig or exc}", operation=operation) from exc
            raise StoreWriteError(f"{operation} rejected: {exc.orig or exc}", operation=operation) from exc
        except (ConnectionError, OSError) as exc:
            raise StoreUnavailableError(f"{operation} failed: {exc}", operation=operation) from exc
        except SQLAlchemyError as exc:
            raise StoreWriteError(f"{operation} failed: {exc}", operation=operation) from exc

    # ---------- generic record operations ----------

    async def find_one(self, model, predicate: Predicate) -> Optional[Record]:
        """First row matching an equality predicate, as a plain dict."""
        async def _op():
            async with self.get_session() as session:
                query = select(model).where(*self._where(model, predicate)).limit(1)
                result = await session.execute(query)
                return self._as_record(result.scalars().first())

        return await self._run(f"find_one({model.__tablename__})", _op)

    async def find_many(self, model, column: str, values: Sequence[Any]) -> List[Record]:
        """Rows whose ``column`` is in ``values`` (one IN query)."""
        if not values:
            return []

        async def _op():
            async with self.get_session() as session:
                query = select(model).where(getattr(model, column).in_(list(values)))
                result = await session.execute(query)
                return [self._as_record(obj) for obj in result.scalars().all()]

        return await self._run(f"find_many({model.__tablename__})", _op)

    async def find_recent(self, model, limit: int = 10, order_by: str = "created_at") -> List[Record]:
        async def _op():
            async with self.get_session() as session:
                query = select(model).order_by(desc(getattr(model, order_by))).limit(limit)
                result = await session.execute(query)
                return [self._as_record(obj) for obj in result.scalars().all()]

        return await self._run(f"find_recent({model.__tablename__})", _op)

    async def insert(self, model, values: Mapping[str, Any]) -> Record:
        """Insert one row; the store assigns defaults (id, timestamps)."""
        async def _op():
            async with self.get_session() as session:
                obj = model(**self._filter_columns(model, values))
                session.add(obj)
                await session.commit()
                await session.refresh(obj)
                return self._as_record(obj)

        return await self._run(f"insert({model.__tablename__})", _op)

    async def update(self, model, predicate: Predicate, patch: Mapping[str, Any]) -> Optional[Record]:
        """
        Apply ``patch`` to the rows matching ``predicate``.
        Returns the first updated row, or None when nothing matched.
        """
        changes = self._filter_columns(model, patch)
        if not changes:
            return await self.find_one(model, predicate)

        async def _op():
            async with self.get_session() as session:
                clauses = self._where(model, predicate)
                stmt = update(model).where(*clauses).values(**changes)
                result = await session.execute(stmt)
                if not result.rowcount:
                    await session.rollback()
                    return None
                await session.commit()
                # Re-read with predicate columns the patch just changed
                moved = {k: v for k, v in changes.items() if k in predicate}
                lookup = {**dict(predicate), **moved}
                row = await session.execute(select(model).where(*self._where(model, lookup)).limit(1))
                return self._as_record(row.scalars().first())

        return await self._run(f"update({model.__tablename__})", _op)

    async def bulk_upsert(self, model, rows: Sequence[Mapping[str, Any]], conflict_key: str) -> int:
        """
        Insert-or-replace ``rows`` in one statement keyed on ``conflict_key``.
        Existing rows keep their primary key and created_at; every other supplied column is overwritten.
        """
        if not rows:
            return 0
        payload = [self._filter_columns(model, r) for r in rows]
        keys: list = []
        for r in payload:
            for k in r:
                if k not in keys:
                    keys.append(k)
        if conflict_key not in keys:
            raise ValueError(f"bulk_upsert rows must carry the conflict key {conflict_key!r}")
        # multi-row VALUES needs a uniform key set
        payload = [{k: r.get(k) for k in keys} for r in payload]

        async def _op():
            async with self.get_session() as session:
                stmt = self._insert_for(session, model).values(payload)
                upsert = stmt.on_conflict_do_update(
                    index_elements=[conflict_key],
                    set_=self._overwrite_all_columns(model, stmt, keys),
                )
                await session.execute(upsert)
                await session.commit()
                return len(payload)

        return await self._run(f"bulk_upsert({model.__tablename__})", _op)

    async def count(self, model, predicate: Optional[Predicate] = None) -> int:
        async def _op():
            async with self.get_session() as session:
                query = select(func.count()).select_from(model)
                clauses = self._where(model, predicate)
                if clauses:
                    query = query.where(*clauses)
                result = await session.execute(query)
                return int(result.scalar() or 0)

        return await self._run(f"count({model.__tablename__})", _op)

    async def select_columns(self, model, *columns: str) -> List[Dict[str, Any]]:
        """Projection of ``columns`` over every row (NULLs of the first column skipped)."""
        async def _op():
            async with self.get_session() as session:
                attrs = [getattr(model, c) for c in columns]
                query = select(*attrs).where(attrs[0].is_not(None))
                result = await session.execute(query)
                return [dict(zip(columns, row)) for row in result.all()]

        return await self._run(f"select_columns({model.__tablename__})", _op)


storage = StorageService()
