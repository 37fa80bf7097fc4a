"""
Document store interface consumed by the chat core.

The chat core only needs a small slice of a document database: point reads,
(merge-)writes, partial updates, all-or-nothing write batches, simple
filtered queries and live listeners that push a full snapshot on every
change. `MemoryStore` and `SupabaseStore` implement it.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from vaultchat.core.exceptions import StoreError
from vaultchat.utils.paths import split

logger = logging.getLogger(__name__)

OPERATORS = ("==", ">=", ">", "<", "<=")

SnapshotCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]


@dataclass(frozen=True)
class FieldFilter:
    field: str
    op: str
    value: Any

    def matches(self, data: dict) -> bool:
        # A document without the field never matches, whatever the operator.
        if self.field not in data:
            return False
        actual = data[self.field]
        try:
            if self.op == "==":
                return actual == self.value
            if self.op == ">=":
                return actual >= self.value
            if self.op == ">":
                return actual > self.value
            if self.op == "<":
                return actual < self.value
            if self.op == "<=":
                return actual <= self.value
        except TypeError:
            return False
        raise ValueError(f"Unsupported operator: {self.op}")


@dataclass(frozen=True)
class Query:
    collection: str
    filters: tuple = ()
    order_field: Optional[str] = None
    descending: bool = False
    limit_to: Optional[int] = None

    def where(self, field: str, op: str, value: Any) -> "Query":
        if op not in OPERATORS:
            raise ValueError(f"Unsupported operator: {op}")
        return replace(self, filters=self.filters + (FieldFilter(field, op, value),))

    def order_by(self, field: str, descending: bool = False) -> "Query":
        return replace(self, order_field=field, descending=descending)

    def limit(self, count: int) -> "Query":
        return replace(self, limit_to=count)


@dataclass
class DocumentSnapshot:
    path: str
    data: Optional[dict] = None

    @property
    def id(self) -> str:
        return split(self.path)[1]

    @property
    def exists(self) -> bool:
        return self.data is not None

    def get(self, field: str, default=None):
        if self.data is None:
            return default
        return self.data.get(field, default)


@dataclass(frozen=True)
class WriteOp:
    kind: str  # "set" | "update" | "delete"
    path: str
    data: Optional[dict] = None
    merge: bool = False


class WriteBatch:
    """Collects writes and commits them atomically through the owning store."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._committed = False
        self.ops: list[WriteOp] = []

    def set(self, path: str, data: dict, merge: bool = False) -> "WriteBatch":
        self.ops.append(WriteOp("set", path, dict(data), merge))
        return self

    def update(self, path: str, data: dict) -> "WriteBatch":
        self.ops.append(WriteOp("update", path, dict(data)))
        return self

    def delete(self, path: str) -> "WriteBatch":
        self.ops.append(WriteOp("delete", path))
        return self

    async def commit(self):
        if self._committed:
            raise StoreError("Write batch was already committed.")
        self._committed = True
        if self.ops:
            await self._store.commit(self.ops)


class ListenerRegistration:
    """Handle for a live listener. `remove()` is idempotent."""

    def __init__(self, on_remove: Callable[[], None]):
        self._on_remove = on_remove
        self.active = True

    def remove(self):
        if not self.active:
            return
        self.active = False
        self._on_remove()


class DocumentStore(ABC):
    @abstractmethod
    async def get(self, path: str) -> DocumentSnapshot: ...

    @abstractmethod
    async def query(self, query: Query) -> list[DocumentSnapshot]: ...

    @abstractmethod
    async def commit(self, ops: list[WriteOp]):
        """Apply every op or none of them."""

    @abstractmethod
    def listen_document(
        self,
        path: str,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> ListenerRegistration: ...

    @abstractmethod
    def listen_query(
        self,
        query: Query,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> ListenerRegistration: ...

    def collection(self, path: str) -> Query:
        return Query(path)

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    async def set(self, path: str, data: dict, merge: bool = False):
        await self.commit([WriteOp("set", path, dict(data), merge)])

    async def update(self, path: str, data: dict):
        await self.commit([WriteOp("update", path, dict(data))])

    async def delete(self, path: str):
        await self.commit([WriteOp("delete", path)])

    async def close(self):
        pass
