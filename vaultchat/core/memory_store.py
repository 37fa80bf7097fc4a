import copy
import logging
from typing import Optional

from vaultchat.core.exceptions import NotFound, StoreError
from vaultchat.core.store import (
    DocumentSnapshot,
    DocumentStore,
    ErrorCallback,
    ListenerRegistration,
    Query,
    SnapshotCallback,
    WriteOp,
)
from vaultchat.utils.paths import split

logger = logging.getLogger(__name__)


class _Listener:
    def __init__(self, target, callback, on_error):
        self.target = target
        self.callback = callback
        self.on_error = on_error
        self.last = None


class MemoryStore(DocumentStore):
    """
    In-process document store.

    Listeners are called synchronously from the writing coroutine, once on
    registration and then whenever their snapshot actually changes.
    """

    def __init__(self):
        self._docs: dict[str, dict] = {}
        self._doc_listeners: list[_Listener] = []
        self._query_listeners: list[_Listener] = []

    async def get(self, path: str) -> DocumentSnapshot:
        return self._snapshot(path)

    async def query(self, query: Query) -> list[DocumentSnapshot]:
        return self._run(query)

    async def commit(self, ops: list[WriteOp]):
        staged = dict(self._docs)

        for op in ops:
            split(op.path)
            if op.kind == "set":
                data = copy.deepcopy(op.data or {})
                if op.merge and op.path in staged:
                    data = {**staged[op.path], **data}
                staged[op.path] = data
            elif op.kind == "update":
                if op.path not in staged:
                    raise NotFound(f"No document to update: {op.path}")
                staged[op.path] = {**staged[op.path], **copy.deepcopy(op.data or {})}
            elif op.kind == "delete":
                staged.pop(op.path, None)
            else:
                raise StoreError(f"Unknown write kind: {op.kind}")

        self._docs = staged
        self._notify({op.path for op in ops})

    def listen_document(
        self,
        path: str,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> ListenerRegistration:
        listener = _Listener(path, callback, on_error)
        self._doc_listeners.append(listener)
        self._deliver(listener, self._snapshot(listener.target))
        return ListenerRegistration(lambda: self._doc_listeners.remove(listener))

    def listen_query(
        self,
        query: Query,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> ListenerRegistration:
        listener = _Listener(query, callback, on_error)
        self._query_listeners.append(listener)
        self._deliver(listener, self._run(query))
        return ListenerRegistration(lambda: self._query_listeners.remove(listener))

    @property
    def listener_count(self) -> int:
        return len(self._doc_listeners) + len(self._query_listeners)

    def _snapshot(self, path: str) -> DocumentSnapshot:
        data = self._docs.get(path)
        return DocumentSnapshot(path, copy.deepcopy(data) if data is not None else None)

    def _run(self, query: Query) -> list[DocumentSnapshot]:
        prefix = query.collection + "/"
        results = []
        for path, data in self._docs.items():
            if not path.startswith(prefix) or "/" in path[len(prefix):]:
                continue
            if all(f.matches(data) for f in query.filters):
                results.append(DocumentSnapshot(path, copy.deepcopy(data)))

        results.sort(key=lambda snap: snap.id)
        if query.order_field:
            # Documents missing the order field drop out, like the hosted stores.
            results = [s for s in results if query.order_field in s.data]
            results.sort(key=lambda s: s.data[query.order_field], reverse=query.descending)
        if query.limit_to is not None:
            results = results[: query.limit_to]
        return results

    def _notify(self, paths: set):
        for listener in list(self._doc_listeners):
            if listener.target in paths:
                self._deliver(listener, self._snapshot(listener.target))

        collections = {split(path)[0] for path in paths}
        for listener in list(self._query_listeners):
            if listener.target.collection in collections:
                self._deliver(listener, self._run(listener.target))

    def _deliver(self, listener: _Listener, snapshot):
        if snapshot == listener.last:
            return
        listener.last = snapshot
        try:
            listener.callback(snapshot)
        except Exception as e:
            logger.exception(f"listener_callback_failed target={listener.target}")
            if listener.on_error:
                listener.on_error(e)
