"""SQLite persistence for tasks and routine sections.

The store exposes one table object per task kind, all sharing the same small
interface (``get``, ``find_by_id``, ``find_many``, ``insert``, ``update``,
``delete``), so the state-machine code can run the same algorithm against
projects, subtasks and routines.

Every read and write happens inside ``TaskStore.atomic()``, which opens a
connection, issues ``BEGIN IMMEDIATE`` and either commits everything or rolls
everything back.  ``atomic()`` is re-entrant within one execution context:
a nested block joins the transaction that is already open, so composite
operations (for example cascade-then-delete) commit as a unit.

``blocked_by`` is stored as a JSON array in a TEXT column.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
from collections.abc import Iterator
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Generic, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from casually.models import BLOCK_ENTRIES, BlockEntry, Project, Routine, RoutineSection, Subtask, TaskKind, utcnow
from casually.state_machine import NotFoundError, TaskError

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    emoji TEXT,
    priority TEXT NOT NULL,
    state TEXT NOT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0,
    blocked_by TEXT NOT NULL DEFAULT '[]',
    is_one_off INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS subtasks (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    emoji TEXT,
    priority TEXT NOT NULL,
    state TEXT NOT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0,
    blocked_by TEXT NOT NULL DEFAULT '[]',
    parent_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY(parent_id) REFERENCES projects(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS routine_sections (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS routines (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    emoji TEXT,
    priority TEXT NOT NULL,
    state TEXT NOT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0,
    blocked_by TEXT NOT NULL DEFAULT '[]',
    section_id TEXT,
    interval TEXT,
    custom_interval TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY(section_id) REFERENCES routine_sections(id) ON DELETE SET NULL
);
CREATE INDEX IF NOT EXISTS idx_subtasks_parent ON subtasks(parent_id);
CREATE INDEX IF NOT EXISTS idx_routines_section ON routines(section_id);
CREATE INDEX IF NOT EXISTS idx_projects_state ON projects(state);
CREATE INDEX IF NOT EXISTS idx_subtasks_state ON subtasks(state);
CREATE INDEX IF NOT EXISTS idx_routines_state ON routines(state);
"""

# ``order`` is an SQL keyword, so the column is named differently.
_COLUMN_FOR_FIELD = {"order": "sort_order"}
_FIELD_FOR_COLUMN = {column: field for field, column in _COLUMN_FOR_FIELD.items()}


class StorageError(TaskError):
    """Raised when a transaction cannot commit.  Nothing from it is persisted."""


class TaskTable(Protocol[RecordT]):
    """The persistence interface the state machine needs for one task kind."""

    def get(self, record_id: str) -> RecordT: ...

    def find_by_id(self, record_id: str) -> RecordT | None: ...

    def find_many(self, **filters: Any) -> list[RecordT]: ...

    def insert(self, record: RecordT) -> RecordT: ...

    def update(self, record_id: str, **fields: Any) -> RecordT: ...

    def delete(self, record_id: str) -> bool: ...


@dataclass(frozen=True)
class TableDef(Generic[RecordT]):
    """Binds a SQL table to the pydantic model stored in it."""

    name: str
    model: type[RecordT]
    entity: TaskKind | str

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(self.model.model_fields)


PROJECTS = TableDef("projects", Project, TaskKind.PROJECT)
SUBTASKS = TableDef("subtasks", Subtask, TaskKind.SUBTASK)
ROUTINES = TableDef("routines", Routine, TaskKind.ROUTINE)
SECTIONS = TableDef("routine_sections", RoutineSection, "Routine section")


def parse_blocked_by(raw: str | bytes | None) -> list[BlockEntry]:
    """Decode a stored ``blocked_by`` column.

    Unreadable values are logged and treated as "no blockers" so a single
    corrupt row does not take down every cascade that scans its table.
    """
    if not raw:
        return []
    try:
        return BLOCK_ENTRIES.validate_json(raw)
    except ValidationError:
        logger.warning("Ignoring unreadable blocked_by value %r", raw)
        return []


def dump_blocked_by(entries: list[BlockEntry]) -> str:
    return BLOCK_ENTRIES.dump_json(entries).decode("utf-8")


def _to_column(field: str, value: Any) -> Any:
    if field == "blocked_by":
        return dump_blocked_by(list(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class SqliteTable(Generic[RecordT]):
    """One table of records, bound to the connection of the current transaction."""

    def __init__(self, conn: sqlite3.Connection, definition: TableDef[RecordT]) -> None:
        self._conn = conn
        self.definition = definition

    def _column(self, field: str) -> str:
        if field not in self.definition.fields:
            raise ValueError(f"unknown field for {self.definition.name}: {field}")
        return _COLUMN_FOR_FIELD.get(field, field)

    def _row_to_record(self, row: sqlite3.Row) -> RecordT:
        data: dict[str, Any] = {}
        for column in row.keys():
            field = _FIELD_FOR_COLUMN.get(column, column)
            data[field] = parse_blocked_by(row[column]) if field == "blocked_by" else row[column]
        return self.definition.model.model_validate(data)

    def get(self, record_id: str) -> RecordT:
        """Return the record with *record_id* or raise ``NotFoundError``."""
        record = self.find_by_id(record_id)
        if record is None:
            raise NotFoundError(self.definition.entity, record_id)
        return record

    def find_by_id(self, record_id: str) -> RecordT | None:
        row = self._conn.execute(f"SELECT * FROM {self.definition.name} WHERE id = ?", (record_id,)).fetchone()
        return None if row is None else self._row_to_record(row)

    def find_many(self, **filters: Any) -> list[RecordT]:
        """Return every record matching all *filters* (field equality), in display order.

        A filter value of ``None`` matches SQL ``NULL``.
        """
        where: list[str] = []
        params: list[Any] = []
        for field, value in filters.items():
            column = self._column(field)
            if value is None:
                where.append(f"{column} IS NULL")
            else:
                where.append(f"{column} = ?")
                params.append(_to_column(field, value))

        query = f"SELECT * FROM {self.definition.name}"
        if where:
            query += " WHERE " + " AND ".join(where)
        query += " ORDER BY sort_order ASC, created_at ASC, id ASC"
        rows = self._conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_record(row) for row in rows]

    def insert(self, record: RecordT) -> RecordT:
        values = {field: getattr(record, field) for field in self.definition.fields}
        columns = [self._column(field) for field in values]
        placeholders = ", ".join("?" for _ in columns)
        self._conn.execute(
            f"INSERT INTO {self.definition.name}({', '.join(columns)}) VALUES({placeholders})",
            tuple(_to_column(field, value) for field, value in values.items()),
        )
        return record

    def update(self, record_id: str, **fields: Any) -> RecordT:
        """Write *fields* to the record and return the refreshed record.

        ``updated_at`` is refreshed automatically unless supplied.

        Raises:
            NotFoundError: If no record has *record_id*.
        """
        fields.setdefault("updated_at", utcnow())
        set_parts = [f"{self._column(field)} = ?" for field in fields]
        params = [_to_column(field, value) for field, value in fields.items()]
        params.append(record_id)
        cur = self._conn.execute(
            f"UPDATE {self.definition.name} SET {', '.join(set_parts)} WHERE id = ?",
            tuple(params),
        )
        if cur.rowcount == 0:
            raise NotFoundError(self.definition.entity, record_id)
        return self.get(record_id)

    def delete(self, record_id: str) -> bool:
        cur = self._conn.execute(f"DELETE FROM {self.definition.name} WHERE id = ?", (record_id,))
        return cur.rowcount > 0


class StoreSession:
    """All tables of the store, bound to one open transaction."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self.projects: SqliteTable[Project] = SqliteTable(conn, PROJECTS)
        self.subtasks: SqliteTable[Subtask] = SqliteTable(conn, SUBTASKS)
        self.routines: SqliteTable[Routine] = SqliteTable(conn, ROUTINES)
        self.sections: SqliteTable[RoutineSection] = SqliteTable(conn, SECTIONS)

    def table(self, kind: TaskKind) -> SqliteTable[Any]:
        """Return the table holding tasks of *kind*."""
        return {
            TaskKind.PROJECT: self.projects,
            TaskKind.SUBTASK: self.subtasks,
            TaskKind.ROUTINE: self.routines,
        }[kind]


# The transaction currently open in this execution context, if any.
_current: ContextVar[tuple[TaskStore, StoreSession] | None] = ContextVar("casually_store_session", default=None)


class TaskStore:
    """SQLite-backed task store.

    Each top-level ``atomic()`` block opens its own connection, so the store
    holds no long-lived connection and needs no explicit shutdown.

    Attributes:
        db_path: Location of the SQLite database file.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("TaskStore ready db=%s", self.db_path)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        # Autocommit mode: transactions are opened explicitly by ``atomic``.
        conn = sqlite3.connect(str(self.db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)
        finally:
            conn.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    # ---- public API ----

    @contextlib.contextmanager
    def atomic(self) -> Iterator[StoreSession]:
        """Run a block of reads and writes as one transaction.

        Yields:
            A ``StoreSession`` whose tables all share the transaction.

        Raises:
            StorageError: If SQLite fails while the transaction is open or at
                commit.  The transaction is rolled back first.
        """
        current = _current.get()
        if current is not None and current[0] is self:
            yield current[1]
            return

        conn = self._get_conn()
        session = StoreSession(conn)
        token = _current.set((self, session))
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield session
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            self._rollback(conn)
            logger.error("Transaction on %s rolled back: %s", self.db_path, exc)
            raise StorageError(f"transaction failed: {exc}") from exc
        except BaseException:
            self._rollback(conn)
            raise
        finally:
            _current.reset(token)
            conn.close()

    @contextlib.contextmanager
    def snapshot(self) -> Iterator[StoreSession]:
        """Read a consistent view of the store without taking the write lock.

        Inside an ``atomic`` block on this store the open session is reused,
        so uncommitted writes are visible.  Otherwise a deferred transaction
        is opened and always rolled back; writers are not held up.

        Yields:
            A ``StoreSession`` meant for reads only.

        Raises:
            StorageError: If SQLite fails while reading.
        """
        current = _current.get()
        if current is not None and current[0] is self:
            yield current[1]
            return

        conn = self._get_conn()
        try:
            conn.execute("BEGIN DEFERRED")
            yield StoreSession(conn)
        except sqlite3.Error as exc:
            logger.error("Read on %s failed: %s", self.db_path, exc)
            raise StorageError(f"read failed: {exc}") from exc
        finally:
            self._rollback(conn)
            conn.close()

    def ping(self) -> bool:
        """Return True when the database answers a trivial query."""
        try:
            conn = self._get_conn()
        except sqlite3.Error:
            logger.warning("Cannot open database %s", self.db_path)
            return False
        try:
            conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            logger.warning("Database %s did not answer", self.db_path)
            return False
        finally:
            conn.close()
