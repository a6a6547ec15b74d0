"""Normalise raw remote documents into the canonical :class:`AppDocument` shape."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from copy import deepcopy
from datetime import date, datetime, time
from typing import Any

from ..const import ENVELOPE_FIELDS, SCHEDULE_MIGRATION_ACTIVE_FROM, SCHEDULE_MIGRATION_NAME
from ..models import AppDocument
from .events import RemoteTimestamp, isoformat_utc, utcnow_iso

_LOGGER = logging.getLogger(__name__)


def convert_timestamps(value: Any) -> Any:
    """Replace every remote-native timestamp in ``value`` with an ISO-8601 string."""

    if isinstance(value, RemoteTimestamp):
        return isoformat_utc(value.to_datetime())
    if isinstance(value, datetime):
        return isoformat_utc(value)
    if isinstance(value, date):
        return isoformat_utc(datetime.combine(value, time.min))
    if isinstance(value, Mapping):
        wire = RemoteTimestamp.from_wire(value)
        if wire is not None:
            return isoformat_utc(wire.to_datetime())
        return {str(key): convert_timestamps(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [convert_timestamps(item) for item in value]
    return value


def strip_envelope(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if key not in ENVELOPE_FIELDS}


def migrate_schedule_versions(document: AppDocument, *, now: str | None = None) -> bool:
    """Synthesize the initial schedule version when entries exist without versions.

    Returns ``True`` when the document was changed.
    """

    schedules = document.collection("schedules")
    versions = document.collection("scheduleVersions")
    if not schedules or versions:
        return False
    _LOGGER.info("Creating initial schedule version active from %s", SCHEDULE_MIGRATION_ACTIVE_FROM)
    versions.append(
        {
            "id": str(uuid.uuid4()),
            "activeFrom": SCHEDULE_MIGRATION_ACTIVE_FROM,
            "createdAt": now or utcnow_iso(),
            "name": SCHEDULE_MIGRATION_NAME,
            "schedules": deepcopy(schedules),
        }
    )
    return True


def sanitize_snapshot(payload: Any) -> AppDocument:
    """Return a well-formed document for an arbitrary remote payload.

    Never raises: anything missing or malformed degrades to defaults.
    """

    if not isinstance(payload, Mapping):
        return AppDocument()
    converted = convert_timestamps(payload)
    document = AppDocument.from_payload(strip_envelope(converted))
    migrate_schedule_versions(document)
    return document


__all__ = [
    "convert_timestamps",
    "migrate_schedule_versions",
    "sanitize_snapshot",
    "strip_envelope",
]
