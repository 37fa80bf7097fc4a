import json
import asyncio
import logging
from typing import Optional

import httpx
from supabase import AsyncClient, PostgrestAPIError

from vaultchat.core.exceptions import BackendUnavailable, NotFound, StoreError
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

_FILTERS = {"==": "eq", ">=": "gte", ">": "gt", "<": "lt", "<=": "lte"}


class SupabaseStore(DocumentStore):
    """
    Document store on top of a single Supabase table.

    Every document is one row of `documents` (see `vaultchat.core.models`):
    its path, parent collection path, id and a JSONB body. Fields are queried
    through PostgREST JSON operators, batches go through the `commit_batch`
    function and listeners ride on Realtime `postgres_changes`, re-reading
    the full snapshot whenever a matching row changes.
    """

    def __init__(self, client: AsyncClient, table: str = "documents"):
        self.client = client
        self.table = table
        self._channels = 0
        self._tasks: set[asyncio.Task] = set()

    async def get(self, path: str) -> DocumentSnapshot:
        response = await self._execute(
            self.client.table(self.table).select("path, data").eq("path", path).limit(1)
        )
        if not response.data:
            return DocumentSnapshot(path)
        return DocumentSnapshot(path, response.data[0]["data"])

    async def query(self, query: Query) -> list[DocumentSnapshot]:
        request = (
            self.client.table(self.table)
            .select("path, data")
            .eq("collection", query.collection)
        )

        for f in query.filters:
            if isinstance(f.value, str):
                request = getattr(request, _FILTERS[f.op])(f"data->>{f.field}", f.value)
            else:
                request = getattr(request, _FILTERS[f.op])(f"data->{f.field}", json.dumps(f.value))

        if query.order_field:
            request = request.order(f"data->>{query.order_field}", desc=query.descending)
        else:
            request = request.order("doc_id")

        if query.limit_to is not None:
            request = request.limit(query.limit_to)

        response = await self._execute(request)
        return [DocumentSnapshot(row["path"], row["data"]) for row in response.data or []]

    async def commit(self, ops: list[WriteOp]):
        payload = []
        for op in ops:
            collection, doc_id = split(op.path)
            payload.append(
                {
                    "kind": op.kind,
                    "path": op.path,
                    "collection": collection,
                    "doc_id": doc_id,
                    "data": op.data or {},
                    "merge": op.merge,
                }
            )

        await self._execute(self.client.rpc("commit_batch", {"ops": payload}))

    def listen_document(
        self,
        path: str,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> ListenerRegistration:
        return self._listen(f"path=eq.{path}", lambda: self.get(path), callback, on_error)

    def listen_query(
        self,
        query: Query,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> ListenerRegistration:
        return self._listen(
            f"collection=eq.{query.collection}", lambda: self.query(query), callback, on_error
        )

    async def close(self):
        await self.client.remove_all_channels()
        for task in list(self._tasks):
            task.cancel()

    def _listen(self, row_filter, fetch, callback, on_error) -> ListenerRegistration:
        """
        One Realtime channel per listener.

        Refreshes run one at a time: a change arriving while a fetch is in
        flight marks the listener dirty and triggers one more fetch after it,
        so the last delivered snapshot is never older than the last change.
        """
        self._channels += 1
        channel = self.client.channel(f"{self.table}-{self._channels}")
        state = {"dirty": False, "runner": None, "last": None, "delivered": False, "stopped": False}

        def fail(e: Exception):
            if on_error:
                on_error(e)

        async def refresh():
            try:
                snapshot = await fetch()
            except Exception as e:
                logger.warning(f"listener_refresh_failed filter={row_filter} error={e}")
                fail(e)
                return
            if state["stopped"] or (state["delivered"] and state["last"] == snapshot):
                return
            state["last"], state["delivered"] = snapshot, True
            try:
                callback(snapshot)
            except Exception as e:
                logger.exception(f"listener_callback_failed filter={row_filter}")
                fail(e)

        async def drain():
            while state["dirty"] and not state["stopped"]:
                state["dirty"] = False
                await refresh()

        def changed(_payload=None):
            state["dirty"] = True
            runner = state["runner"]
            if runner is None or runner.done():
                state["runner"] = self._spawn(drain())

        async def start():
            channel.on_postgres_changes(
                "*",
                schema="public",
                table=self.table,
                filter=row_filter,
                callback=changed,
            )
            await channel.subscribe()
            changed()

        starter = self._spawn(start())

        def stop():
            state["stopped"] = True
            starter.cancel()
            self._spawn(self.client.remove_channel(channel))

        return ListenerRegistration(stop)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _execute(self, request):
        try:
            return await request.execute()
        except httpx.TransportError as e:
            logger.error(f"supabase_unavailable error={e}")
            raise BackendUnavailable(f"Document store unreachable: {e}")
        except PostgrestAPIError as e:
            if e.code == "P0002":
                raise NotFound(e.message)
            logger.error(f"supabase_error code={e.code} message={e.message}")
            raise StoreError(e.message or "Document store rejected the request.")
