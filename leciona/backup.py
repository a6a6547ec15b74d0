"""JSON backup files: export the whole document and restore it on any device."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .const import BACKUP_APP_NAME, BACKUP_VERSION
from .models import AppDocument

_LOGGER = logging.getLogger(__name__)


class BackupError(ValueError):
    """Raised when a backup payload is not a recognised export."""


def export_backup(document: AppDocument, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now(tz=UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    timestamp = now.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return {
        "metadata": {
            "version": BACKUP_VERSION,
            "timestamp": timestamp,
            "app": BACKUP_APP_NAME,
        },
        "data": document.to_dict(),
    }


def parse_backup(payload: Any) -> AppDocument:
    """Validate a backup envelope and decode its data onto the defaults.

    Raises :class:`BackupError` when the envelope is missing or was produced by
    another application.
    """

    if not isinstance(payload, Mapping):
        raise BackupError("backup must be a JSON object")
    metadata = payload.get("metadata")
    data = payload.get("data")
    if not isinstance(metadata, Mapping) or not isinstance(data, Mapping):
        raise BackupError("backup is missing its metadata or data section")
    app = metadata.get("app")
    if app != BACKUP_APP_NAME:
        raise BackupError(f"backup was not created by {BACKUP_APP_NAME} (app={app!r})")
    version = str(metadata.get("version") or "")
    if version != BACKUP_VERSION:
        _LOGGER.warning("Restoring backup with unexpected version %s", version or "<missing>")
    return AppDocument.from_payload(data)


def write_backup(path: str | Path, document: AppDocument, *, now: datetime | None = None) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    txt = json.dumps(export_backup(document, now=now), ensure_ascii=False, indent=2, default=str)
    target.write_text(txt + "\n", encoding="utf-8")
    return target


def read_backup(path: str | Path) -> AppDocument:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as err:
        raise BackupError(f"backup file is not valid JSON: {err}") from err
    return parse_backup(payload)


__all__ = ["BackupError", "export_backup", "parse_backup", "read_backup", "write_backup"]
