# circulation/repository/memory.py
from collections import Counter
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Dict, Generic, List, Optional, Tuple, Type

from loguru import logger
from pydantic import ValidationError
from pymongo import DESCENDING

from circulation.core.errors import Contention, DuplicateKey, IntegrityFailure
from circulation.repository.base import COLLECTIONS, Collection, Filters, Repository, SortSpec, T


class _Transaction:
    """Write-set staged until commit. Keys are (collection name, entity id)."""

    def __init__(self) -> None:
        # value: (staged entity, version expected in the store; None for inserts)
        self.writes: Dict[Tuple[str, str], Tuple[Any, Optional[int]]] = {}


_current_txn: ContextVar[Optional[_Transaction]] = ContextVar("memory_txn", default=None)


# --- Query helpers ---
def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _matches(actual: Any, condition: Any) -> bool:
    actual = _plain(actual)
    if isinstance(condition, dict):
        for op, operand in condition.items():
            if op == "$in":
                if actual not in [_plain(v) for v in operand]:
                    return False
            elif op == "$nin":
                if actual in [_plain(v) for v in operand]:
                    return False
            elif op == "$ne":
                if actual == _plain(operand):
                    return False
            elif op in ("$lt", "$lte", "$gt", "$gte"):
                if actual is None:
                    return False
                operand = _plain(operand)
                if op == "$lt" and not actual < operand:
                    return False
                if op == "$lte" and not actual <= operand:
                    return False
                if op == "$gt" and not actual > operand:
                    return False
                if op == "$gte" and not actual >= operand:
                    return False
            else:
                raise ValueError(f"Unsupported query operator: {op}")
        return True
    return actual == _plain(condition)


def _sort_key(value: Any) -> Tuple[int, Any]:
    # None sorts first, like MongoDB
    if value is None:
        return (0, 0)
    value = _plain(value)
    if isinstance(value, datetime):
        return (1, value.timestamp())
    if isinstance(value, date):
        return (1, value.toordinal())
    if isinstance(value, (int, float, Decimal)):
        return (1, value)
    return (2, str(value))


class MemoryCollection(Collection[T], Generic[T]):
    def __init__(self, repo: "MemoryRepository", name: str, model: Type[T], unique: Tuple[str, ...] = ()) -> None:
        self._repo = repo
        self.name = name
        self.model = model
        self.unique = unique
        self._rows: Dict[str, T] = {}

    # --- visibility ---
    def _staged(self) -> Dict[str, Tuple[Any, Optional[int]]]:
        txn = _current_txn.get()
        if txn is None:
            return {}
        return {eid: w for (coll, eid), w in txn.writes.items() if coll == self.name}

    def _visible(self) -> Dict[str, T]:
        rows = dict(self._rows)
        for eid, (entity, _) in self._staged().items():
            rows[eid] = entity
        return rows

    def _validated(self, entity: T) -> T:
        # mirrors CHECK constraints of a relational store
        try:
            return self.model.model_validate(entity.model_dump())
        except ValidationError as e:
            logger.error(f"Constraint violation on {self.name} '{entity.id}': {e}")
            raise IntegrityFailure(f"{self.model.__name__} '{entity.id}' violates a constraint: {e}", entity_id=entity.id) from e

    def _check_unique(self, entity: T, rows: Dict[str, T]) -> None:
        for field_name in self.unique:
            value = getattr(entity, field_name)
            for other_id, other in rows.items():
                if other_id != entity.id and getattr(other, field_name) == value:
                    raise DuplicateKey(
                        f"{self.model.__name__} with {field_name}={value!r} already exists.",
                        field=field_name,
                        entity_id=entity.id,
                    )

    # --- reads ---
    async def get(self, entity_id: str) -> Optional[T]:
        entity = self._visible().get(entity_id)
        return entity.model_copy(deep=True) if entity is not None else None

    def _matching(self, filters: Optional[Filters]) -> List[T]:
        filters = filters or {}
        return [
            e for e in self._visible().values()
            if all(_matches(getattr(e, k, None), cond) for k, cond in filters.items())
        ]

    async def find(
        self,
        filters: Optional[Filters] = None,
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
    ) -> List[T]:
        found = self._matching(filters)
        for field_name, direction in reversed(list(sort or [])):
            found.sort(key=lambda e: _sort_key(getattr(e, field_name, None)), reverse=direction == DESCENDING)
        if limit is not None:
            found = found[:limit]
        return [e.model_copy(deep=True) for e in found]

    async def count_by(
        self, field: str, filters: Optional[Filters] = None, limit: Optional[int] = None
    ) -> List[Tuple[Any, int]]:
        counts = Counter(_plain(getattr(e, field, None)) for e in self._matching(filters))
        ranked = sorted(counts.items(), key=lambda pair: (-pair[1], _sort_key(pair[0])))
        return ranked[:limit] if limit is not None else ranked

    # --- writes ---
    async def add(self, entity: T) -> T:
        async with self._repo.transaction():
            txn = _current_txn.get()
            rows = self._visible()
            if entity.id in rows:
                raise DuplicateKey(f"{self.model.__name__} '{entity.id}' already exists.", field="id", entity_id=entity.id)
            staged = self._validated(entity)
            self._check_unique(staged, rows)
            txn.writes[(self.name, entity.id)] = (staged, None)
        return entity

    async def update(self, entity: T) -> T:
        async with self._repo.transaction():
            txn = _current_txn.get()
            rows = self._visible()
            current = rows.get(entity.id)
            if current is None:
                raise IntegrityFailure(f"{self.model.__name__} '{entity.id}' does not exist.", entity_id=entity.id)
            if current.version != entity.version:
                raise Contention(
                    f"{self.model.__name__} '{entity.id}' was modified concurrently "
                    f"(expected v{entity.version}, found v{current.version}).",
                    entity_id=entity.id,
                )
            key = (self.name, entity.id)
            expected = txn.writes[key][1] if key in txn.writes else entity.version
            staged = self._validated(entity)
            self._check_unique(staged, rows)
            staged.version = entity.version + 1
            txn.writes[key] = (staged, expected)
            entity.version += 1
        return entity

    # --- commit (called by the repository, no awaits) ---
    def _verify(self, writes: Dict[str, Tuple[Any, Optional[int]]]) -> None:
        merged = dict(self._rows)
        for eid, (entity, expected) in writes.items():
            stored = self._rows.get(eid)
            if expected is None and stored is not None:
                raise DuplicateKey(f"{self.model.__name__} '{eid}' already exists.", field="id", entity_id=eid)
            if expected is not None and (stored is None or stored.version != expected):
                raise Contention(f"{self.model.__name__} '{eid}' changed before commit.", entity_id=eid)
            merged[eid] = entity
        for eid, (entity, _) in writes.items():
            self._check_unique(entity, merged)

    def _apply(self, writes: Dict[str, Tuple[Any, Optional[int]]]) -> None:
        for eid, (entity, _) in writes.items():
            self._rows[eid] = entity


class MemoryRepository(Repository):
    """Process-local store. Transactions stage writes and validate versions at commit."""

    def __init__(self) -> None:
        self._collections: Dict[str, MemoryCollection] = {}
        for name, (model, unique) in COLLECTIONS.items():
            collection = MemoryCollection(self, name, model, unique)
            self._collections[name] = collection
            setattr(self, name, collection)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if _current_txn.get() is not None:
            yield
            return
        txn = _Transaction()
        token = _current_txn.set(txn)
        try:
            yield
        finally:
            _current_txn.reset(token)
        self._commit(txn)

    def _commit(self, txn: _Transaction) -> None:
        by_collection: Dict[str, Dict[str, Tuple[Any, Optional[int]]]] = {}
        for (coll, eid), write in txn.writes.items():
            by_collection.setdefault(coll, {})[eid] = write
        for coll, writes in by_collection.items():
            self._collections[coll]._verify(writes)
        for coll, writes in by_collection.items():
            self._collections[coll]._apply(writes)
        if txn.writes:
            logger.debug(f"Memory transaction committed ({len(txn.writes)} writes).")
