"""SQLite-backed persistence for the tracking engine."""

from __future__ import annotations

import pickle
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Callable, Generic, Iterator, List, Mapping, Optional, Sequence, TypeVar

from .domain import (
    Machine,
    Material,
    Order,
    ProductionTask,
    QRPoint,
    Shift,
    TaskMaterialAssignment,
    WorkSession,
    Worker,
)
from .repository import DuplicateRecordError, RecordNotFoundError, UnitOfWork

T = TypeVar("T")


class SQLiteUnitOfWork(UnitOfWork):
    """Unit of work mapped onto a SQLite transaction with savepoints."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._lock = threading.RLock()
        self._depth = 0
        self._savepoint_counter = 0

    @property
    def active(self) -> bool:
        return self._depth > 0

    def __enter__(self) -> "SQLiteUnitOfWork":
        self._lock.acquire()
        self._depth += 1
        if self._depth == 1 and not self._connection.in_transaction:
            try:
                self._connection.execute("BEGIN IMMEDIATE")
            except BaseException:
                # __exit__ never runs for a failed __enter__
                self._depth -= 1
                self._lock.release()
                raise
        return self

    def __exit__(self, exc_type, exc, traceback) -> bool:
        try:
            if self._depth == 1:
                if exc_type is None:
                    self._connection.commit()
                else:
                    self._connection.rollback()
        finally:
            self._depth -= 1
            self._lock.release()
        return False

    @contextmanager
    def savepoint(self):
        with self:
            self._savepoint_counter += 1
            name = f"sp_{self._savepoint_counter}"
            self._connection.execute(f"SAVEPOINT {name}")
            try:
                yield self
            except BaseException:
                self._connection.execute(f"ROLLBACK TO SAVEPOINT {name}")
                self._connection.execute(f"RELEASE SAVEPOINT {name}")
                raise
            self._connection.execute(f"RELEASE SAVEPOINT {name}")

    @contextmanager
    def reading(self):
        with self._lock:
            yield self


class SQLiteRepository(Generic[T]):
    """Repository implementation that persists records inside SQLite.

    Records are stored pickled. ``columns`` copies selected attributes into
    real columns so that ``indexes`` can constrain them.
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        table: str,
        *,
        columns: Optional[Mapping[str, Callable[[T], Any]]] = None,
        indexes: Sequence[str] = (),
        unit_of_work: Optional[SQLiteUnitOfWork] = None,
    ) -> None:
        self._connection = connection
        self._table = table
        self._columns = dict(columns or {})
        self._unit_of_work = unit_of_work
        extra = "".join(f", {name}" for name in self._columns)
        self._connection.execute(
            f"CREATE TABLE IF NOT EXISTS {table} ("  # nosec - static table names
            f"id TEXT PRIMARY KEY, payload BLOB NOT NULL{extra})"
        )
        for statement in indexes:
            self._connection.execute(statement)
        self._connection.commit()

    def __contains__(self, item_id: object) -> bool:
        if not isinstance(item_id, str):
            return False
        cursor = self._connection.execute(
            f"SELECT 1 FROM {self._table} WHERE id = ? LIMIT 1", (item_id,)
        )
        return cursor.fetchone() is not None

    def __iter__(self) -> Iterator[T]:
        return iter(self.list())

    def __len__(self) -> int:
        cursor = self._connection.execute(f"SELECT COUNT(1) FROM {self._table}")
        value = cursor.fetchone()
        return int(value[0]) if value else 0

    def _commit(self) -> None:
        if self._unit_of_work is None or not self._unit_of_work.active:
            self._connection.commit()

    def _row(self, item_id: str, item: T) -> List[Any]:
        values = [item_id, pickle.dumps(item)]
        values.extend(extract(item) for extract in self._columns.values())
        return values

    def _write(self, sql: str, values: Sequence[Any], item_id: str) -> None:
        try:
            self._connection.execute(sql, values)
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecordError(
                f"Record {item_id!r} in {self._table} violates a constraint: {exc}"
            ) from exc
        self._commit()

    # ------------------------------------------------------------------
    # CRUD operations
    # ------------------------------------------------------------------
    def add(self, item_id: str, item: T) -> None:
        if item_id in self:
            raise DuplicateRecordError(f"Record with id {item_id!r} already exists")
        names = ["id", "payload", *self._columns]
        placeholders = ", ".join("?" for _ in names)
        self._write(
            f"INSERT INTO {self._table} ({', '.join(names)}) VALUES ({placeholders})",
            self._row(item_id, item),
            item_id,
        )

    def upsert(self, item_id: str, item: T) -> None:
        names = ["id", "payload", *self._columns]
        placeholders = ", ".join("?" for _ in names)
        updates = ", ".join(f"{name} = excluded.{name}" for name in names[1:])
        self._write(
            f"INSERT INTO {self._table} ({', '.join(names)}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}",
            self._row(item_id, item),
            item_id,
        )

    def get(self, item_id: str) -> T:
        cursor = self._connection.execute(
            f"SELECT payload FROM {self._table} WHERE id = ?", (item_id,)
        )
        row = cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        return pickle.loads(row[0])

    def remove(self, item_id: str) -> None:
        cursor = self._connection.execute(
            f"DELETE FROM {self._table} WHERE id = ?", (item_id,)
        )
        if cursor.rowcount == 0:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        self._commit()

    def list(self) -> List[T]:
        cursor = self._connection.execute(
            f"SELECT payload FROM {self._table} ORDER BY id"
        )
        return [pickle.loads(row[0]) for row in cursor.fetchall()]


def _timestamp(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


class TrackingDatabase:
    """Convenience facade bundling SQLite repositories for all aggregates."""

    def __init__(self, path: str) -> None:
        connection = sqlite3.connect(path, check_same_thread=False)
        connection.row_factory = sqlite3.Row
        self._connection = connection
        self.unit_of_work = SQLiteUnitOfWork(connection)
        uow = self.unit_of_work
        self.machines = SQLiteRepository[Machine](connection, "machines", unit_of_work=uow)
        self.workers = SQLiteRepository[Worker](connection, "workers", unit_of_work=uow)
        self.orders = SQLiteRepository[Order](connection, "orders", unit_of_work=uow)
        self.tasks = SQLiteRepository[ProductionTask](connection, "tasks", unit_of_work=uow)
        self.sessions = SQLiteRepository[WorkSession](
            connection,
            "work_sessions",
            columns={
                "user_id": lambda session: session.user_id,
                "task_id": lambda session: session.task_id,
                "end_time": lambda session: _timestamp(session.end_time),
            },
            indexes=[
                "CREATE UNIQUE INDEX IF NOT EXISTS ux_work_sessions_open_user "
                "ON work_sessions(user_id) WHERE end_time IS NULL",
            ],
            unit_of_work=uow,
        )
        self.shifts = SQLiteRepository[Shift](
            connection,
            "shifts",
            columns={
                "user_id": lambda shift: shift.user_id,
                "day": lambda shift: shift.day.isoformat(),
            },
            indexes=[
                "CREATE UNIQUE INDEX IF NOT EXISTS ux_shifts_user_day "
                "ON shifts(user_id, day)",
            ],
            unit_of_work=uow,
        )
        self.materials = SQLiteRepository[Material](connection, "materials", unit_of_work=uow)
        self.task_materials = SQLiteRepository[TaskMaterialAssignment](
            connection,
            "task_materials",
            columns={
                "task_id": lambda assignment: assignment.task_id,
                "material_id": lambda assignment: assignment.material_id,
            },
            indexes=[
                "CREATE UNIQUE INDEX IF NOT EXISTS ux_task_materials_pair "
                "ON task_materials(task_id, material_id)",
            ],
            unit_of_work=uow,
        )
        self.qr_points = SQLiteRepository[QRPoint](
            connection,
            "qr_points",
            columns={"hash": lambda point: point.hash},
            indexes=[
                "CREATE UNIQUE INDEX IF NOT EXISTS ux_qr_points_hash ON qr_points(hash)",
            ],
            unit_of_work=uow,
        )

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> "TrackingDatabase":
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[BaseException],
    ) -> None:
        self.close()


__all__ = ["SQLiteRepository", "SQLiteUnitOfWork", "TrackingDatabase"]
