from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from ..const import COLLECTIONS
from ..models import AppDocument, Record

_LOGGER = logging.getLogger(__name__)


def _is_tombstone(record: Mapping[str, Any]) -> bool:
    return bool(record.get("deleted"))


def _deleted_at(record: Mapping[str, Any]) -> float | None:
    """Return the tombstone time as epoch seconds.

    A missing ``deletedAt`` counts as the epoch; an unparseable one yields
    ``None`` so it never wins a comparison.
    """

    raw = record.get("deletedAt")
    if not raw:
        return 0.0
    if not isinstance(raw, str):
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.timestamp()


def _local_wins(local: Mapping[str, Any], remote: Mapping[str, Any]) -> bool:
    if not _is_tombstone(local):
        # Remote is authoritative for live content; a live local copy never
        # overrides it, and cannot resurrect a remote tombstone either.
        return False
    if not _is_tombstone(remote):
        return True
    local_time = _deleted_at(local)
    remote_time = _deleted_at(remote)
    if local_time is None or remote_time is None:
        return False
    return local_time > remote_time


def merge_collection(remote: Iterable[Record] | None, local: Iterable[Record] | None) -> list[Record]:
    """Reconcile one collection keyed by record ``id``.

    Remote records form the base. Local records absent remotely are kept,
    a local tombstone replaces a live remote record, and when both sides are
    tombstoned the later ``deletedAt`` wins (ties keep remote).
    """

    merged: dict[Any, Record] = {}
    for record in remote or ():
        merged[record.get("id")] = record
    for record in local or ():
        key = record.get("id")
        current = merged.get(key)
        if current is None or _local_wins(record, current):
            merged[key] = record
    return list(merged.values())


def merge_documents(remote: AppDocument, local: AppDocument) -> AppDocument:
    """Merge every collection of ``local`` into ``remote``.

    Profile and unknown fields come from the remote side; settings come from
    the remote side with cloud sync flagged as enabled.
    """

    result = remote.copy()
    for name in COLLECTIONS:
        result.collections[name] = merge_collection(
            remote.collections.get(name), local.collections.get(name)
        )
    result.settings["googleSyncEnabled"] = True
    _LOGGER.debug(
        "Merged documents: %s",
        {name: len(result.collections[name]) for name in COLLECTIONS if result.collections[name]},
    )
    return result


__all__ = ["merge_collection", "merge_documents"]
