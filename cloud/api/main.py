from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Response, WebSocket, WebSocketDisconnect, status

from leciona.cloudsync.echo import normalize
from leciona.cloudsync.events import RemoteSnapshot, RemoteTimestamp
from leciona.cloudsync.remote import resolve_server_timestamps
from leciona.const import REMOTE_COLLECTION

from .auth import Principal, principal_dependency, principal_from_headers

_LOGGER = logging.getLogger(__name__)

ALLOWED_COLLECTIONS = {REMOTE_COLLECTION}


@dataclass
class StoredDocument:
    data: dict[str, Any]
    update_time: RemoteTimestamp
    version: int = 1


@dataclass
class DocumentState:
    """In-memory reference implementation of the remote document store."""

    documents: dict[tuple[str, str], StoredDocument] = field(default_factory=dict)
    listeners: dict[tuple[str, str], set[asyncio.Queue]] = field(default_factory=dict)

    # ------------------------------------------------------------------
    def snapshot(self, collection: str, doc_id: str) -> RemoteSnapshot:
        stored = self.documents.get((collection, doc_id))
        if stored is None:
            return RemoteSnapshot(exists=False)
        return RemoteSnapshot(exists=True, data=normalize(stored.data))

    def put(self, collection: str, doc_id: str, payload: dict[str, Any]) -> StoredDocument:
        now = RemoteTimestamp.now()
        data = normalize(resolve_server_timestamps(payload, now))
        key = (collection, doc_id)
        current = self.documents.get(key)
        stored = StoredDocument(data=data, update_time=now, version=(current.version + 1) if current else 1)
        self.documents[key] = stored
        self._broadcast(collection, doc_id)
        return stored

    def delete(self, collection: str, doc_id: str) -> bool:
        removed = self.documents.pop((collection, doc_id), None)
        if removed is not None:
            self._broadcast(collection, doc_id)
        return removed is not None

    def subscribe(self, collection: str, doc_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self.listeners.setdefault((collection, doc_id), set()).add(queue)
        queue.put_nowait(self.snapshot(collection, doc_id).to_wire())
        return queue

    def unsubscribe(self, collection: str, doc_id: str, queue: asyncio.Queue) -> None:
        listeners = self.listeners.get((collection, doc_id))
        if not listeners:
            return
        listeners.discard(queue)
        if not listeners:
            self.listeners.pop((collection, doc_id), None)

    def _broadcast(self, collection: str, doc_id: str) -> None:
        frame = self.snapshot(collection, doc_id).to_wire()
        for queue in list(self.listeners.get((collection, doc_id), ())):
            queue.put_nowait(frame)


def _require_collection(collection: str) -> None:
    if collection not in ALLOWED_COLLECTIONS:
        raise HTTPException(status_code=404, detail={"error": "not-found", "collection": collection})


def create_app() -> FastAPI:
    app = FastAPI()
    state = DocumentState()
    app.state.state = state

    @app.get("/documents/{collection}/{doc_id}")
    async def handle_get(
        collection: str,
        doc_id: str,
        principal: Principal = Depends(principal_dependency),  # noqa: B008
    ) -> dict[str, Any]:
        _require_collection(collection)
        principal.require_document(doc_id)
        return state.snapshot(collection, doc_id).to_wire()

    @app.put("/documents/{collection}/{doc_id}")
    async def handle_put(
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        principal: Principal = Depends(principal_dependency),  # noqa: B008
    ) -> dict[str, Any]:
        _require_collection(collection)
        principal.require_document(doc_id)
        stored = state.put(collection, doc_id, data)
        _LOGGER.debug("Stored %s/%s version %s", collection, doc_id, stored.version)
        return {"ok": True, "version": stored.version, "updateTime": stored.update_time.to_wire()}

    @app.delete("/documents/{collection}/{doc_id}")
    async def handle_delete(
        collection: str,
        doc_id: str,
        principal: Principal = Depends(principal_dependency),  # noqa: B008
    ) -> Response:
        _require_collection(collection)
        principal.require_document(doc_id)
        if not state.delete(collection, doc_id):
            raise HTTPException(status_code=404, detail={"error": "not-found", "document": doc_id})
        return Response(status_code=204)

    @app.websocket("/documents/{collection}/{doc_id}/listen")
    async def handle_listen(websocket: WebSocket, collection: str, doc_id: str) -> None:
        principal = principal_from_headers(
            websocket.headers.get("X-User-ID"),
            websocket.headers.get("X-User-Email"),
        )
        if collection not in ALLOWED_COLLECTIONS or principal is None or not principal.can_access(doc_id):
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        await websocket.accept()
        queue = state.subscribe(collection, doc_id)

        async def _send_frames() -> None:
            while True:
                frame = await queue.get()
                await websocket.send_json(frame)

        sender = asyncio.create_task(_send_frames())
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            sender.cancel()
            with suppress(asyncio.CancelledError, WebSocketDisconnect):
                await sender
            state.unsubscribe(collection, doc_id, queue)

    return app


def main() -> None:
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8080)


if __name__ == "__main__":
    main()
