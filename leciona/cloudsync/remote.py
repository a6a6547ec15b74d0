"""Remote document store: one document per account, delivered as realtime snapshots."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from contextlib import suppress
from copy import deepcopy
from typing import Any

from aiohttp import ClientError, ClientResponseError, ClientSession, ClientTimeout, WSMsgType

from ..const import REMOTE_COLLECTION
from .echo import json_default, to_wire
from .events import RemoteSnapshot, RemoteTimestamp, ServerTimestamp, SnapshotStream

_LOGGER = logging.getLogger(__name__)

ERROR_PERMISSION_DENIED = "permission-denied"
ERROR_UNAVAILABLE = "unavailable"
ERROR_NOT_FOUND = "not-found"
ERROR_UNKNOWN = "unknown"

_ERROR_HINTS = {
    ERROR_PERMISSION_DENIED: "Check the remote store security rules for this account.",
    ERROR_UNAVAILABLE: "Check your internet connection.",
    ERROR_NOT_FOUND: "The remote document store endpoint was not found; check the base URL.",
}


class DocumentStoreError(RuntimeError):
    """Raised when the remote store rejects a request or cannot be reached."""

    def __init__(self, message: str, *, code: str = ERROR_UNKNOWN) -> None:
        super().__init__(message)
        self.code = code

    @property
    def hint(self) -> str:
        return describe_error(self.code)


def describe_error(code: str | None) -> str:
    """Return a human readable hint for a transport error code."""

    return _ERROR_HINTS.get(code or "", "Check your internet connection or try again later.")


def error_code_for_status(status: int) -> str:
    if status in (401, 403):
        return ERROR_PERMISSION_DENIED
    if status == 404:
        return ERROR_NOT_FOUND
    if status in (408, 429) or status >= 500:
        return ERROR_UNAVAILABLE
    return ERROR_UNKNOWN


def resolve_server_timestamps(value: Any, resolved: RemoteTimestamp) -> Any:
    if ServerTimestamp.is_token(value):
        return resolved
    if isinstance(value, Mapping):
        return {key: resolve_server_timestamps(item, resolved) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_server_timestamps(item, resolved) for item in value]
    return value


class DocumentStore(ABC):
    """Contract between the sync controller and a remote document store."""

    collection: str = REMOTE_COLLECTION

    @abstractmethod
    async def set_document(self, doc_id: str, payload: Mapping[str, Any]) -> None:
        """Replace the document ``doc_id`` with ``payload``."""

    @abstractmethod
    def listen(self, doc_id: str) -> SnapshotStream:
        """Open a realtime subscription; the first delivery is the current state."""

    async def aclose(self) -> None:
        return None


class MemoryDocumentStore:
    """In-process remote store shared by any number of device clients.

    A write from a client is first delivered to that client's own listeners
    with ``has_pending_writes`` set, then committed and broadcast to every
    listener, mirroring how a realtime store reports optimistic local writes.
    """

    def __init__(self, collection: str = REMOTE_COLLECTION) -> None:
        self.collection = collection
        self._documents: dict[str, dict[str, Any]] = {}
        self._listeners: dict[str, list[tuple[MemoryDocumentClient | None, SnapshotStream]]] = {}
        self.writes: list[tuple[str, dict[str, Any]]] = []

    def client(self) -> MemoryDocumentClient:
        return MemoryDocumentClient(self)

    def get(self, doc_id: str) -> dict[str, Any] | None:
        document = self._documents.get(doc_id)
        return deepcopy(document) if document is not None else None

    def seed(self, doc_id: str, data: Mapping[str, Any]) -> None:
        """Write ``data`` as if it came from another device."""

        self._commit(doc_id, to_wire(data))

    def delete(self, doc_id: str) -> None:
        self._documents.pop(doc_id, None)
        self._broadcast(doc_id, RemoteSnapshot(exists=False))

    def listener_count(self, doc_id: str) -> int:
        return len(self._listeners.get(doc_id, ()))

    # ------------------------------------------------------------------
    def _commit(self, doc_id: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        document = resolve_server_timestamps(deepcopy(dict(payload)), RemoteTimestamp.now())
        self._documents[doc_id] = document
        self.writes.append((doc_id, deepcopy(document)))
        self._broadcast(doc_id, None)
        return document

    def _broadcast(self, doc_id: str, snapshot: RemoteSnapshot | None, *, only: MemoryDocumentClient | None = None) -> None:
        for owner, stream in list(self._listeners.get(doc_id, ())):
            if only is not None and owner is not only:
                continue
            stream.push(snapshot if snapshot is not None else self._snapshot(doc_id))

    def _snapshot(self, doc_id: str, *, pending: bool = False) -> RemoteSnapshot:
        document = self._documents.get(doc_id)
        if document is None:
            return RemoteSnapshot(exists=False, has_pending_writes=pending)
        return RemoteSnapshot(exists=True, data=deepcopy(document), has_pending_writes=pending)

    def _register(self, doc_id: str, owner: MemoryDocumentClient | None) -> SnapshotStream:
        listeners = self._listeners.setdefault(doc_id, [])
        stream = SnapshotStream()
        entry = (owner, stream)

        def _detach() -> None:
            with suppress(ValueError):
                listeners.remove(entry)

        stream.on_close = _detach
        listeners.append(entry)
        stream.push(self._snapshot(doc_id))
        return stream


class MemoryDocumentClient(DocumentStore):
    """One device's connection to a :class:`MemoryDocumentStore`."""

    def __init__(self, store: MemoryDocumentStore) -> None:
        self.store = store
        self.collection = store.collection
        self.failure: DocumentStoreError | None = None

    async def set_document(self, doc_id: str, payload: Mapping[str, Any]) -> None:
        if self.failure is not None:
            raise self.failure
        wire = to_wire(payload)
        pending = resolve_server_timestamps(deepcopy(wire), RemoteTimestamp.now())
        self.store._broadcast(
            doc_id,
            RemoteSnapshot(exists=True, data=pending, has_pending_writes=True),
            only=self,
        )
        await asyncio.sleep(0)
        self.store._commit(doc_id, wire)

    def listen(self, doc_id: str) -> SnapshotStream:
        if self.failure is not None:
            stream = SnapshotStream()
            stream.fail(self.failure)
            return stream
        return self.store._register(doc_id, self)


class HttpDocumentStore(DocumentStore):
    """aiohttp client for the reference document service in ``cloud.api``."""

    def __init__(
        self,
        base_url: str,
        session: ClientSession | None = None,
        *,
        collection: str = REMOTE_COLLECTION,
        timeout: float = 30,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.collection = collection
        self._session = session
        self._owns_session = session is None
        self._timeout = ClientTimeout(total=timeout)
        self._pumps: set[asyncio.Task] = set()

    def _document_url(self, doc_id: str) -> str:
        return f"{self.base_url}/documents/{self.collection}/{doc_id}"

    def _get_session(self) -> ClientSession:
        if self._session is None:
            self._session = ClientSession()
            self._owns_session = True
        return self._session

    @staticmethod
    def _headers(doc_id: str) -> dict[str, str]:
        return {"X-User-ID": doc_id}

    def encode_payload(self, payload: Mapping[str, Any]) -> str:
        return json.dumps(to_wire(payload), default=json_default, separators=(",", ":"))

    async def set_document(self, doc_id: str, payload: Mapping[str, Any]) -> None:
        body = self.encode_payload(payload)
        headers = {**self._headers(doc_id), "Content-Type": "application/json"}
        try:
            async with self._get_session().put(
                self._document_url(doc_id),
                data=body,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    raise DocumentStoreError(
                        f"write failed: {resp.status} {text}",
                        code=error_code_for_status(resp.status),
                    )
        except ClientError as err:
            raise DocumentStoreError(f"write request failed: {err}", code=ERROR_UNAVAILABLE) from err
        except TimeoutError as err:
            raise DocumentStoreError("write request timed out", code=ERROR_UNAVAILABLE) from err

    def listen(self, doc_id: str) -> SnapshotStream:
        stream = SnapshotStream()
        task = asyncio.get_running_loop().create_task(self._pump(doc_id, stream))
        self._pumps.add(task)
        task.add_done_callback(self._pumps.discard)
        stream.on_close = task.cancel
        return stream

    async def _pump(self, doc_id: str, stream: SnapshotStream) -> None:
        url = f"{self._document_url(doc_id)}/listen"
        try:
            async with self._get_session().ws_connect(url, headers=self._headers(doc_id), heartbeat=30) as ws:
                async for msg in ws:
                    if msg.type == WSMsgType.TEXT:
                        snapshot = self.parse_frame(msg.data)
                        if snapshot is not None:
                            stream.push(snapshot)
                    elif msg.type == WSMsgType.ERROR:
                        raise DocumentStoreError(f"realtime channel error: {ws.exception()}", code=ERROR_UNAVAILABLE)
        except asyncio.CancelledError:
            raise
        except ClientResponseError as err:
            stream.fail(
                DocumentStoreError(f"subscription rejected: {err.status}", code=error_code_for_status(err.status))
            )
            return
        except ClientError as err:
            stream.fail(DocumentStoreError(f"subscription failed: {err}", code=ERROR_UNAVAILABLE))
            return
        except TimeoutError:
            stream.fail(DocumentStoreError("subscription timed out", code=ERROR_UNAVAILABLE))
            return
        except DocumentStoreError as err:
            stream.fail(err)
            return
        except Exception as err:
            _LOGGER.exception("Unexpected error on realtime channel %s: %s", url, err)
            stream.fail(DocumentStoreError(f"subscription failed: {err}", code=ERROR_UNKNOWN))
            return
        if not stream.closed:
            stream.fail(DocumentStoreError("realtime channel closed by server", code=ERROR_UNAVAILABLE))

    @staticmethod
    def parse_frame(text: str) -> RemoteSnapshot | None:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            _LOGGER.debug("Ignoring malformed realtime frame: %s", text[:200])
            return None
        if not isinstance(payload, Mapping):
            return None
        return RemoteSnapshot.from_wire(payload)

    async def aclose(self) -> None:
        for task in list(self._pumps):
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


__all__ = [
    "DocumentStore",
    "DocumentStoreError",
    "ERROR_NOT_FOUND",
    "ERROR_PERMISSION_DENIED",
    "ERROR_UNAVAILABLE",
    "ERROR_UNKNOWN",
    "HttpDocumentStore",
    "MemoryDocumentClient",
    "MemoryDocumentStore",
    "describe_error",
    "error_code_for_status",
    "resolve_server_timestamps",
]
