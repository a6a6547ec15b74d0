"""Typed view of the aggregate persisted locally and remotely."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any

from .const import COLLECTIONS, DEFAULT_PROFILE, DEFAULT_SETTINGS, PRIMARY_COLLECTIONS

Record = dict[str, Any]


def default_settings() -> dict[str, Any]:
    return deepcopy(DEFAULT_SETTINGS)


def overlay_settings(payload: Any) -> dict[str, Any]:
    """Overlay ``payload`` onto the default settings; payload values win per field."""

    settings = default_settings()
    if not isinstance(payload, Mapping):
        return settings
    for key, value in payload.items():
        if key == "advancedModes" or value is None:
            continue
        settings[str(key)] = deepcopy(value)
    modes = payload.get("advancedModes")
    if isinstance(modes, Mapping):
        settings["advancedModes"].update(
            {str(key): deepcopy(value) for key, value in modes.items() if value is not None}
        )
    return settings


def _decode_records(value: Any) -> list[Record]:
    if not isinstance(value, Iterable) or isinstance(value, str | bytes | bytearray | Mapping):
        return []
    return [deepcopy(dict(item)) for item in value if isinstance(item, Mapping)]


@dataclass(slots=True)
class AppDocument:
    """A user's complete data set: named collections plus settings and profile."""

    profile: dict[str, Any] = field(default_factory=lambda: deepcopy(DEFAULT_PROFILE))
    settings: dict[str, Any] = field(default_factory=default_settings)
    collections: dict[str, list[Record]] = field(default_factory=lambda: {name: [] for name in COLLECTIONS})
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> AppDocument:
        """Decode an arbitrary payload, degrading anything malformed to defaults.

        Unknown top-level keys are kept in ``extra`` so fields written by newer
        or older clients survive a round trip untouched.
        """

        if not isinstance(payload, Mapping):
            return cls()
        collections = {name: _decode_records(payload.get(name)) for name in COLLECTIONS}
        profile_raw = payload.get("profile")
        profile = deepcopy(dict(profile_raw)) if isinstance(profile_raw, Mapping) else deepcopy(DEFAULT_PROFILE)
        extra = {
            str(key): deepcopy(value)
            for key, value in payload.items()
            if key not in COLLECTIONS and key not in ("profile", "settings")
        }
        return cls(
            profile=profile,
            settings=overlay_settings(payload.get("settings")),
            collections=collections,
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = deepcopy(self.extra)
        payload["profile"] = deepcopy(self.profile)
        for name in COLLECTIONS:
            payload[name] = deepcopy(self.collections.get(name, []))
        payload["settings"] = deepcopy(self.settings)
        return payload

    def copy(self) -> AppDocument:
        return AppDocument(
            profile=deepcopy(self.profile),
            settings=deepcopy(self.settings),
            collections=deepcopy(self.collections),
            extra=deepcopy(self.extra),
        )

    def collection(self, name: str) -> list[Record]:
        if name not in COLLECTIONS:
            raise KeyError(f"unknown collection: {name}")
        return self.collections.setdefault(name, [])

    def has_primary_data(self) -> bool:
        return any(self.collections.get(name) for name in PRIMARY_COLLECTIONS)

    def with_settings(self, **changes: Any) -> AppDocument:
        """Return a copy whose settings carry ``changes``."""

        document = self.copy()
        document.settings.update(changes)
        return document


__all__ = ["AppDocument", "Record", "default_settings", "overlay_settings"]
