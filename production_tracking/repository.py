"""In-memory repositories and the unit-of-work contract used by the engine."""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import asdict
from typing import (
    Callable,
    Dict,
    Generic,
    Hashable,
    Iterable,
    Iterator,
    List,
    Mapping,
    MutableMapping,
    Optional,
    TypeVar,
)

T = TypeVar("T")

UniqueKey = Callable[[T], Optional[Hashable]]


class RepositoryError(RuntimeError):
    """Base exception for repository errors."""


class DuplicateRecordError(RepositoryError):
    """Raised when a record id or a unique key already exists."""


class RecordNotFoundError(RepositoryError):
    """Raised when a requested record is missing."""


class InMemoryRepository(Generic[T]):
    """Generic repository backed by a simple dictionary.

    ``unique`` maps a constraint name to a key function. Records whose key is
    ``None`` are exempt, which gives partial unique constraints such as "one
    open session per user". Unique checks scan all records.
    """

    def __init__(self, unique: Optional[Mapping[str, UniqueKey]] = None) -> None:
        self._items: MutableMapping[str, T] = {}
        self._unique: Dict[str, UniqueKey] = dict(unique or {})
        self._guard = threading.Lock()

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def _check_unique(self, item_id: str, item: T) -> None:
        for name, key_of in self._unique.items():
            key = key_of(item)
            if key is None:
                continue
            for other_id, other in self._items.items():
                if other_id != item_id and key_of(other) == key:
                    raise DuplicateRecordError(
                        f"Record {item_id!r} violates unique constraint {name!r}"
                    )

    def add(self, item_id: str, item: T) -> None:
        with self._guard:
            if item_id in self._items:
                raise DuplicateRecordError(f"Record with id {item_id!r} already exists")
            self._check_unique(item_id, item)
            self._items[item_id] = item

    def upsert(self, item_id: str, item: T) -> None:
        with self._guard:
            self._check_unique(item_id, item)
            self._items[item_id] = item

    def get(self, item_id: str) -> T:
        try:
            return self._items[item_id]
        except KeyError as exc:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found") from exc

    def remove(self, item_id: str) -> None:
        with self._guard:
            if item_id not in self._items:
                raise RecordNotFoundError(f"Record with id {item_id!r} not found")
            del self._items[item_id]

    def list(self) -> List[T]:
        return list(self._items.values())

    def as_dicts(self) -> Iterable[Dict]:
        for item in self.list():
            yield asdict(item)

    def __iter__(self) -> Iterator[T]:
        return iter(self.list())

    # ------------------------------------------------------------------
    # Transaction support
    # ------------------------------------------------------------------
    def snapshot(self) -> Dict[str, T]:
        with self._guard:
            return copy.deepcopy(dict(self._items))

    def restore(self, snapshot: Mapping[str, T]) -> None:
        with self._guard:
            self._items = dict(snapshot)


class UnitOfWork(ABC):
    """Coordinates one atomic business transaction across repositories.

    Entering the unit serializes writers. Leaving it with an exception rolls
    every change back; leaving it normally commits. Units nest, and only the
    outermost one commits or rolls back.
    """

    @abstractmethod
    def __enter__(self) -> "UnitOfWork":
        ...

    @abstractmethod
    def __exit__(self, exc_type, exc, traceback) -> bool:
        ...

    @abstractmethod
    def savepoint(self):
        """Context manager whose failure rolls back only its own changes."""

    @abstractmethod
    def reading(self):
        """Context manager for readers that must not see half-written units."""


class InMemoryUnitOfWork(UnitOfWork):
    """Snapshot-based unit of work over in-memory repositories.

    Every outermost unit and every savepoint deep-copies all repositories,
    so the cost of a write grows with the total amount of stored data. That
    is fine for demos and tests; production data belongs in SQLite.
    """

    def __init__(self, repositories: Iterable[InMemoryRepository]) -> None:
        self._repositories = list(repositories)
        self._lock = threading.RLock()
        self._depth = 0
        self._snapshots: Optional[List[Dict]] = None

    def __enter__(self) -> "InMemoryUnitOfWork":
        self._lock.acquire()
        self._depth += 1
        if self._depth == 1:
            try:
                self._snapshots = self._take_snapshots()
            except BaseException:
                # __exit__ never runs for a failed __enter__
                self._depth -= 1
                self._lock.release()
                raise
        return self

    def __exit__(self, exc_type, exc, traceback) -> bool:
        try:
            if self._depth == 1 and exc_type is not None:
                self.rollback()
        finally:
            self._depth -= 1
            if self._depth == 0:
                self._snapshots = None
            self._lock.release()
        return False

    def _take_snapshots(self) -> List[Dict]:
        return [repository.snapshot() for repository in self._repositories]

    def _restore(self, snapshots: List[Dict]) -> None:
        for repository, snapshot in zip(self._repositories, snapshots):
            repository.restore(snapshot)

    def rollback(self) -> None:
        if self._snapshots is not None:
            self._restore(self._snapshots)

    @contextmanager
    def savepoint(self):
        with self._lock:
            snapshots = self._take_snapshots()
            try:
                yield self
            except BaseException:
                self._restore(snapshots)
                raise

    @contextmanager
    def reading(self):
        with self._lock:
            yield self


__all__ = [
    "InMemoryRepository",
    "InMemoryUnitOfWork",
    "UnitOfWork",
    "RepositoryError",
    "DuplicateRecordError",
    "RecordNotFoundError",
]
