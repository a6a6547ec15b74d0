"""Echo cancellation: recognise remote snapshots that only confirm our own writes."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import date, datetime, time
from typing import Any

from ..models import AppDocument
from .events import SERVER_TIMESTAMP_WIRE, RemoteSnapshot, RemoteTimestamp, ServerTimestamp, isoformat_utc

_LOGGER = logging.getLogger(__name__)


def to_wire(value: Any) -> Any:
    """Return ``value`` in the shape the remote store accepts.

    ``None`` values inside mappings are dropped (the remote store rejects
    unset fields), tuples and sets become lists. Server-timestamp tokens are
    passed through for the transport to encode.
    """

    if isinstance(value, AppDocument):
        value = value.to_dict()
    if isinstance(value, Mapping):
        return {str(key): to_wire(item) for key, item in value.items() if item is not None}
    if isinstance(value, list | tuple):
        return [to_wire(item) for item in value]
    if isinstance(value, set | frozenset):
        return [to_wire(item) for item in sorted(value, key=repr)]
    return value


def json_default(value: Any) -> Any:
    if isinstance(value, ServerTimestamp):
        return dict(SERVER_TIMESTAMP_WIRE)
    if isinstance(value, RemoteTimestamp):
        return value.to_wire()
    if isinstance(value, datetime):
        return isoformat_utc(value)
    if isinstance(value, date):
        return isoformat_utc(datetime.combine(value, time.min))
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def normalize(value: Any) -> Any:
    """Wire conversion followed by a JSON round trip, the form used for comparisons."""

    return json.loads(json.dumps(to_wire(value), default=json_default))


class LastSavedSnapshot:
    """The document exactly as last written to, or accepted from, the remote store.

    Owned by one controller and shared by reference with its scheduler and
    echo canceller. Never persisted.
    """

    def __init__(self) -> None:
        self._value: Any = None
        self.generation = 0

    @property
    def value(self) -> Any:
        return self._value

    def update(self, document: Any) -> int:
        self._value = normalize(document)
        self.generation += 1
        return self.generation

    def restore(self, previous: Any, *, generation: int) -> bool:
        """Put back ``previous`` unless the snapshot moved past ``generation``."""

        if self.generation != generation:
            return False
        self._value = previous
        self.generation += 1
        return True

    def clear(self) -> None:
        self._value = None
        self.generation += 1

    def matches(self, document: Any) -> bool:
        if self._value is None:
            return False
        return normalize(document) == self._value


def is_echo(candidate: Any, last_saved: LastSavedSnapshot) -> bool:
    return last_saved.matches(candidate)


class EchoCanceller:
    """Decide whether an inbound snapshot carries new information."""

    def __init__(self, last_saved: LastSavedSnapshot) -> None:
        self.last_saved = last_saved

    def is_pending_local_write(self, snapshot: RemoteSnapshot) -> bool:
        # Our own optimistic write, not yet acknowledged; a wipe always goes through.
        return snapshot.has_pending_writes and not snapshot.wiped

    def is_echo(self, document: AppDocument) -> bool:
        echo = is_echo(document, self.last_saved)
        if echo:
            _LOGGER.debug("Inbound snapshot matches the last saved document; ignoring echo")
        return echo


__all__ = [
    "EchoCanceller",
    "LastSavedSnapshot",
    "is_echo",
    "json_default",
    "normalize",
    "to_wire",
]
