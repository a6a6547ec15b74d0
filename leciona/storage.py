from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from .const import STORAGE_KEY
from .models import AppDocument

_LOGGER = logging.getLogger(__name__)


class LocalStore:
    """Local persistent cache: one keyed JSON entry holding the whole document.

    Writes are synchronous so a document is durable on disk before any remote
    write for it is attempted.
    """

    def __init__(self, path: str | Path, key: str = STORAGE_KEY) -> None:
        self.path = Path(path)
        self.key = key

    def _read_entries(self) -> dict[str, Any]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            entries = json.loads(text)
        except json.JSONDecodeError:
            _LOGGER.warning("Local cache %s is not valid JSON; ignoring it", self.path)
            return {}
        return entries if isinstance(entries, dict) else {}

    def _write_entries(self, entries: dict[str, Any]) -> None:
        tmp = self.path.with_suffix(".tmp")
        txt = json.dumps(entries, ensure_ascii=False, indent=2) + "\n"
        tmp.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(txt, encoding="utf-8")
        tmp.replace(self.path)

    def read_raw(self) -> dict[str, Any] | None:
        """Return the stored payload exactly as written, or ``None`` when absent."""

        payload = self._read_entries().get(self.key)
        return payload if isinstance(payload, dict) else None

    def read(self) -> AppDocument:
        """Return the cached document, decoded permissively onto defaults."""

        return AppDocument.from_payload(self.read_raw())

    def exists(self) -> bool:
        return self.read_raw() is not None

    def save(self, document: AppDocument | dict[str, Any]) -> None:
        payload = document.to_dict() if isinstance(document, AppDocument) else dict(document)
        entries = self._read_entries()
        entries[self.key] = payload
        self._write_entries(entries)

    def clear(self) -> None:
        entries = self._read_entries()
        if entries.pop(self.key, None) is None:
            return
        if entries:
            self._write_entries(entries)
        else:
            self.path.unlink(missing_ok=True)
        _LOGGER.debug("Cleared local cache entry %s", self.key)


__all__ = ["LocalStore"]
