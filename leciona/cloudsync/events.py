from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

_LOGGER = logging.getLogger(__name__)

SERVER_TIMESTAMP_WIRE: dict[str, str] = {".sv": "timestamp"}


class ServerTimestamp:
    """Placeholder resolved by the remote store to its own write time."""

    _instance: ServerTimestamp | None = None

    def __new__(cls) -> ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    @staticmethod
    def is_token(value: Any) -> bool:
        return isinstance(value, ServerTimestamp) or (isinstance(value, Mapping) and dict(value) == SERVER_TIMESTAMP_WIRE)


SERVER_TIMESTAMP = ServerTimestamp()


@dataclass(slots=True, frozen=True)
class RemoteTimestamp:
    """Timestamp value native to the remote store (seconds + nanoseconds)."""

    seconds: int
    nanos: int = 0

    @classmethod
    def now(cls) -> RemoteTimestamp:
        return cls.from_datetime(datetime.now(tz=UTC))

    @classmethod
    def from_datetime(cls, value: datetime) -> RemoteTimestamp:
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return cls(seconds=int(value.timestamp() // 1), nanos=value.microsecond * 1000)

    @classmethod
    def from_wire(cls, payload: Any) -> RemoteTimestamp | None:
        if not isinstance(payload, Mapping) or set(payload) != {"_seconds", "_nanoseconds"}:
            return None
        try:
            return cls(seconds=int(payload["_seconds"]), nanos=int(payload["_nanoseconds"]))
        except (TypeError, ValueError):
            return None

    def to_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.seconds, tz=UTC).replace(microsecond=self.nanos // 1000)

    def to_wire(self) -> dict[str, int]:
        return {"_seconds": self.seconds, "_nanoseconds": self.nanos}


def isoformat_utc(value: datetime) -> str:
    """Format ``value`` as ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    text = value.astimezone(UTC).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def utcnow_iso() -> str:
    return isoformat_utc(datetime.now(tz=UTC))


@dataclass(slots=True)
class RemoteSnapshot:
    """One realtime delivery of the remote document."""

    exists: bool
    data: dict[str, Any] | None = None
    has_pending_writes: bool = False

    @property
    def wiped(self) -> bool:
        return bool(self.data) and self.data.get("wiped") is True

    def to_wire(self) -> dict[str, Any]:
        return {"exists": self.exists, "data": self.data, "hasPendingWrites": self.has_pending_writes}

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any]) -> RemoteSnapshot:
        data = payload.get("data")
        exists = bool(payload.get("exists", data is not None))
        return cls(
            exists=exists,
            data=dict(data) if exists and isinstance(data, Mapping) else None,
            has_pending_writes=bool(payload.get("hasPendingWrites", False)),
        )


_CLOSED = object()


@dataclass(slots=True)
class _Failure:
    error: BaseException


class SnapshotStream:
    """Cancellable channel of :class:`RemoteSnapshot` deliveries.

    Producers call :meth:`push` / :meth:`fail`; the consumer iterates with
    ``async for``. :meth:`close` ends iteration at once, discarding anything
    still queued, and runs the ``on_close`` hook so the producer can detach
    its listener.
    """

    def __init__(self, on_close: Callable[[], None] | None = None) -> None:
        self.on_close = on_close
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, snapshot: RemoteSnapshot) -> None:
        if self._closed:
            return
        self._queue.put_nowait(snapshot)

    def fail(self, error: BaseException) -> None:
        if self._closed:
            return
        self._queue.put_nowait(_Failure(error))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        hook, self.on_close = self.on_close, None
        if hook is not None:
            try:
                hook()
            except Exception:  # pragma: no cover - detach hooks are best effort
                _LOGGER.debug("Snapshot stream close hook failed", exc_info=True)

    def __aiter__(self) -> SnapshotStream:
        return self

    async def __anext__(self) -> RemoteSnapshot:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._closed:
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            raise item.error
        return item


__all__ = [
    "SERVER_TIMESTAMP",
    "SERVER_TIMESTAMP_WIRE",
    "RemoteSnapshot",
    "RemoteTimestamp",
    "ServerTimestamp",
    "SnapshotStream",
    "isoformat_utc",
    "utcnow_iso",
]
