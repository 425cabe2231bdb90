"""Row-store backends used by the data access layer.

Both backends expose the same small capability set over named tables with
rows as plain dicts, so the repository never knows which one it talks to.
"""
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from common.models import Base

logger = logging.getLogger(__name__)

SUPPORTED_OPS = ("eq", "gte", "lte", "in")

# Natural keys enforced by the in-memory backend (the SQL schema carries them as constraints).
UNIQUE_KEYS: Dict[str, Tuple[str, ...]] = {
    "members": ("line_id", "member_id"),
    "tasks": ("task_id",),
    "system_settings": ("key",),
}

# Tables with an integer surrogate key filled in on insert.
AUTOINCREMENT_TABLES = ("members", "tasks", "task_history", "member_login_logs", "task_reminders")


class Condition(NamedTuple):
    column: str
    op: str
    value: Any


def eq(column: str, value: Any) -> Condition:
    return Condition(column, "eq", value)


def gte(column: str, value: Any) -> Condition:
    return Condition(column, "gte", value)


def lte(column: str, value: Any) -> Condition:
    return Condition(column, "lte", value)


def in_(column: str, values: Iterable[Any]) -> Condition:
    return Condition(column, "in", list(values))


OrderBy = Tuple[str, bool]  # (column, descending)


class DuplicateRowError(Exception):
    def __init__(self, table: str, column: str, value: Any):
        super().__init__(f"duplicate key value violates unique constraint {table}.{column}={value!r}")
        self.code = "23505"
        self.table = table
        self.column = column


class RowStore(ABC):
    name = "abstract"

    @abstractmethod
    async def select(self, table: str, where: Sequence[Condition] = (), columns: Optional[Sequence[str]] = None,
                     order_by: Sequence[OrderBy] = (), limit: Optional[int] = None) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def insert(self, table: str, rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def update(self, table: str, values: Dict[str, Any], where: Sequence[Condition] = ()) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def delete(self, table: str, where: Sequence[Condition] = ()) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def count(self, table: str, where: Sequence[Condition] = ()) -> int:
        ...

    async def close(self) -> None:
        return None


# --- In-memory backend ---

def _matches(row: Dict[str, Any], condition: Condition) -> bool:
    value = row.get(condition.column)
    if condition.op == "eq":
        return value == condition.value
    if condition.op == "in":
        return value in condition.value
    if value is None:
        return False
    if condition.op == "gte":
        return value >= condition.value
    if condition.op == "lte":
        return value <= condition.value
    raise ValueError(f"Unsupported operator: {condition.op}")


def _sort_rows(rows: List[Dict[str, Any]], order_by: Sequence[OrderBy]) -> List[Dict[str, Any]]:
    # Stable sorts applied from the least significant key outwards.
    ordered = list(rows)
    for column, descending in reversed(list(order_by)):
        ordered.sort(key=lambda r: (r.get(column) is not None, r.get(column)), reverse=descending)
    return ordered


class MemoryRowStore(RowStore):
    """Single-writer, process-local store. Nothing survives a restart."""

    name = "memory"

    def __init__(self):
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._sequences: Dict[str, int] = {}

    def _rows(self, table: str) -> List[Dict[str, Any]]:
        return self._tables.setdefault(table, [])

    def _filter(self, table: str, where: Sequence[Condition]) -> List[Dict[str, Any]]:
        for condition in where:
            if condition.op not in SUPPORTED_OPS:
                raise ValueError(f"Unsupported operator: {condition.op}")
        return [row for row in self._rows(table) if all(_matches(row, c) for c in where)]

    def _check_unique(self, table: str, candidate: Dict[str, Any], ignore: Optional[Dict[str, Any]] = None) -> None:
        for column in UNIQUE_KEYS.get(table, ()):
            value = candidate.get(column)
            if value is None:
                continue
            for row in self._rows(table):
                if row is ignore:
                    continue
                if row.get(column) == value:
                    raise DuplicateRowError(table, column, value)

    async def select(self, table, where=(), columns=None, order_by=(), limit=None):
        rows = _sort_rows(self._filter(table, where), order_by)
        if limit is not None:
            rows = rows[:limit]
        if columns:
            return [{c: copy.deepcopy(row.get(c)) for c in columns} for row in rows]
        return [copy.deepcopy(row) for row in rows]

    async def insert(self, table, rows):
        stored: List[Dict[str, Any]] = []
        staged: List[Dict[str, Any]] = []
        for row in rows:
            candidate = copy.deepcopy(dict(row))
            self._check_unique(table, candidate)
            for other in staged:
                for column in UNIQUE_KEYS.get(table, ()):
                    if candidate.get(column) is not None and candidate.get(column) == other.get(column):
                        raise DuplicateRowError(table, column, candidate.get(column))
            staged.append(candidate)
        # All rows validated before any is written.
        for candidate in staged:
            if table in AUTOINCREMENT_TABLES and candidate.get("id") is None:
                self._sequences[table] = self._sequences.get(table, 0) + 1
                candidate["id"] = self._sequences[table]
            self._rows(table).append(candidate)
            stored.append(copy.deepcopy(candidate))
        return stored

    async def update(self, table, values, where=()):
        targets = self._filter(table, where)
        for row in targets:
            self._check_unique(table, {**row, **values}, ignore=row)
        for row in targets:
            row.update(copy.deepcopy(values))
        return [copy.deepcopy(row) for row in targets]

    async def delete(self, table, where=()):
        targets = self._filter(table, where)
        doomed = {id(row) for row in targets}
        self._tables[table] = [row for row in self._rows(table) if id(row) not in doomed]
        return [copy.deepcopy(row) for row in targets]

    async def count(self, table, where=()):
        return len(self._filter(table, where))


# --- SQLAlchemy backend ---

class SqlRowStore(RowStore):
    """Runs each call in its own session/transaction against the ORM tables."""

    name = "sql"

    def __init__(self, database_url: Optional[str] = None, echo: bool = False, engine=None):
        if engine is None:
            if not database_url:
                raise RuntimeError("DATABASE_URL is not configured")
            engine = create_async_engine(database_url, echo=echo, pool_pre_ping=True)
        self.engine = engine
        self.session_factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    @staticmethod
    def _table(table: str):
        try:
            return Base.metadata.tables[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}") from None

    @staticmethod
    def _clauses(tbl, where: Sequence[Condition]) -> list:
        clauses = []
        for condition in where:
            column = tbl.c[condition.column]
            if condition.op == "eq":
                clauses.append(column.is_(None) if condition.value is None else column == condition.value)
            elif condition.op == "gte":
                clauses.append(column >= condition.value)
            elif condition.op == "lte":
                clauses.append(column <= condition.value)
            elif condition.op == "in":
                clauses.append(column.in_(condition.value))
            else:
                raise ValueError(f"Unsupported operator: {condition.op}")
        return clauses

    @staticmethod
    def _primary_key_clause(tbl, row: Dict[str, Any]):
        return [col == row[col.name] for col in tbl.primary_key.columns]

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def select(self, table, where=(), columns=None, order_by=(), limit=None):
        tbl = self._table(table)
        selected = [tbl.c[c] for c in columns] if columns else [tbl]
        stmt = select(*selected).where(*self._clauses(tbl, where))
        for column, descending in order_by:
            stmt = stmt.order_by(tbl.c[column].desc() if descending else tbl.c[column].asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [dict(row) for row in result.mappings().all()]

    async def insert(self, table, rows):
        tbl = self._table(table)
        stored: List[Dict[str, Any]] = []
        async with self.session_factory() as session:
            async with session.begin():
                for row in rows:
                    result = await session.execute(insert(tbl).values(**row).returning(*tbl.c))
                    stored.append(dict(result.mappings().one()))
        return stored

    async def update(self, table, values, where=()):
        tbl = self._table(table)
        clauses = self._clauses(tbl, where)
        async with self.session_factory() as session:
            async with session.begin():
                pk_cols = list(tbl.primary_key.columns)
                keys = (await session.execute(select(*pk_cols).where(*clauses))).mappings().all()
                if not keys:
                    return []
                updated: List[Dict[str, Any]] = []
                for key in keys:
                    pk_clause = self._primary_key_clause(tbl, key)
                    await session.execute(update(tbl).where(*pk_clause).values(**values))
                    row = (await session.execute(select(tbl).where(*pk_clause))).mappings().one()
                    updated.append(dict(row))
                return updated

    async def delete(self, table, where=()):
        tbl = self._table(table)
        clauses = self._clauses(tbl, where)
        async with self.session_factory() as session:
            async with session.begin():
                rows = [dict(r) for r in (await session.execute(select(tbl).where(*clauses))).mappings().all()]
                if rows:
                    await session.execute(delete(tbl).where(*clauses))
                return rows

    async def count(self, table, where=()):
        tbl = self._table(table)
        stmt = select(func.count()).select_from(tbl).where(*self._clauses(tbl, where))
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return int(result.scalar() or 0)

    async def close(self) -> None:
        await self.engine.dispose()


def build_row_store(app_settings) -> RowStore:
    backend = (app_settings.STORE_BACKEND or "sql").strip().lower()
    if backend == "memory":
        logger.info("Using in-memory row store; data is lost on restart.")
        return MemoryRowStore()
    if backend == "sql":
        return SqlRowStore(app_settings.DATABASE_URL, echo=app_settings.APP_ENV == "dev")
    raise ValueError(f"Unsupported STORE_BACKEND: {app_settings.STORE_BACKEND}")
