"""Tie local persistence, the realtime subscription and the merge policy together."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import voluptuous as vol
from aiohttp import ClientSession

from ..backup import export_backup, parse_backup
from ..const import (
    COLLECTIONS,
    CONF_BASE_URL,
    CONF_COLLECTION,
    CONF_DEBOUNCE_SECONDS,
    CONF_STORAGE_KEY,
    CONF_STORAGE_PATH,
    CONF_SYNC_ENABLED,
    DEFAULT_DEBOUNCE_SECONDS,
    DEFAULT_STORAGE_FILENAME,
    FIELD_UPDATED_AT,
    FIELD_WIPED,
    FIELD_WIPED_AT,
    REMOTE_COLLECTION,
    STORAGE_KEY,
)
from ..models import AppDocument
from ..storage import LocalStore
from ..theme import ThemeVariables
from .auth import AuthSession, AuthSignal
from .conflict import merge_documents
from .echo import EchoCanceller, LastSavedSnapshot, to_wire
from .events import SERVER_TIMESTAMP, RemoteSnapshot, SnapshotStream, utcnow_iso
from .remote import DocumentStore, DocumentStoreError, HttpDocumentStore, describe_error
from .sanitizer import sanitize_snapshot
from .scheduler import DebouncedPersistence, SaveStatus

_LOGGER = logging.getLogger(__name__)

OPTIONS_SCHEMA = vol.Schema(
    {
        vol.Optional(CONF_SYNC_ENABLED, default=True): vol.Boolean(),
        vol.Optional(CONF_BASE_URL, default=""): vol.Any(None, vol.Coerce(str)),
        vol.Optional(CONF_COLLECTION, default=REMOTE_COLLECTION): vol.All(vol.Coerce(str), vol.Length(min=1)),
        vol.Optional(CONF_DEBOUNCE_SECONDS, default=DEFAULT_DEBOUNCE_SECONDS): vol.All(
            vol.Coerce(float), vol.Range(min=0)
        ),
        vol.Optional(CONF_STORAGE_KEY, default=STORAGE_KEY): vol.All(vol.Coerce(str), vol.Length(min=1)),
        vol.Optional(CONF_STORAGE_PATH): vol.Any(None, vol.Coerce(str)),
    },
    extra=vol.ALLOW_EXTRA,
)


class CloudSyncError(RuntimeError):
    """Raised when a sync operation cannot be started or completed."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class HardResetError(CloudSyncError):
    """Raised when the remote half of a hard reset fails."""

    @property
    def hint(self) -> str:
        return describe_error(self.reason)


def _validate_options(options: Mapping[str, Any]) -> dict[str, Any]:
    data = dict(options)
    while True:
        try:
            return OPTIONS_SCHEMA(data)
        except vol.Invalid as err:
            key = err.path[0] if err.path else None
            if key not in data:
                raise
            _LOGGER.warning("Ignoring invalid cloud sync option %s=%r: %s", key, data[key], err.msg)
            data.pop(key)


@dataclass(slots=True)
class CloudSyncConfig:
    """Options controlling the sync controller."""

    sync_enabled: bool = True
    base_url: str = ""
    collection: str = REMOTE_COLLECTION
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    storage_key: str = STORAGE_KEY
    storage_path: str | None = None

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> CloudSyncConfig:
        data = _validate_options(options)
        storage_path = str(data.get(CONF_STORAGE_PATH) or "").strip() or None
        return cls(
            sync_enabled=bool(data[CONF_SYNC_ENABLED]),
            base_url=str(data[CONF_BASE_URL] or "").strip().rstrip("/"),
            collection=str(data[CONF_COLLECTION]).strip() or REMOTE_COLLECTION,
            debounce_seconds=float(data[CONF_DEBOUNCE_SECONDS]),
            storage_key=str(data[CONF_STORAGE_KEY]),
            storage_path=storage_path,
        )

    def to_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {
            CONF_SYNC_ENABLED: self.sync_enabled,
            CONF_BASE_URL: self.base_url,
            CONF_COLLECTION: self.collection,
            CONF_DEBOUNCE_SECONDS: self.debounce_seconds,
            CONF_STORAGE_KEY: self.storage_key,
        }
        if self.storage_path:
            options[CONF_STORAGE_PATH] = self.storage_path
        return options

    @property
    def ready(self) -> bool:
        return bool(self.sync_enabled and self.base_url)


class SyncState(str, Enum):
    SIGNED_OUT = "signed_out"
    SUBSCRIBING = "subscribing"
    LIVE = "live"
    OFFLINE = "offline"


class SyncController:
    """Own the in-memory document and keep it in step with local and remote copies.

    The controller follows the authentication signal: a session opens a
    realtime subscription to that account's document, a sign-out or account
    switch closes it. Inbound snapshots are sanitized, checked for the wipe
    signal and for echoes of our own writes, protected against an empty
    remote on first sync, and otherwise merged with the local cache.
    Outbound changes go through :class:`DebouncedPersistence`.

    Transport failures never raise out of the public methods; they are
    reported through :meth:`status`. Only the explicit commands
    (:meth:`async_hard_reset`, :meth:`restore_backup`) raise.
    """

    def __init__(
        self,
        local_store: LocalStore,
        remote: DocumentStore | None,
        auth: AuthSignal,
        *,
        config: CloudSyncConfig | None = None,
        on_theme: Callable[[ThemeVariables], None] | None = None,
    ) -> None:
        self.config = config or CloudSyncConfig()
        self.local_store = local_store
        self.remote = remote
        self.auth = auth
        self.last_saved = LastSavedSnapshot()
        self.echo = EchoCanceller(self.last_saved)
        self.document = AppDocument()
        self.theme = ThemeVariables.from_settings(self.document.settings)
        self.state = SyncState.SIGNED_OUT
        self.scheduler = DebouncedPersistence(
            local_store=local_store,
            remote=remote,
            last_saved=self.last_saved,
            document_provider=lambda: self.document,
            session_provider=lambda: self._session,
            delay=self.config.debounce_seconds,
            on_persisted=self._apply_theme,
            upload_gate=lambda: self.state is not SyncState.SUBSCRIBING,
        )
        self._on_theme = on_theme
        self._owns_remote = False
        self._started = False
        self._session: AuthSession | None = None
        self._stream: SnapshotStream | None = None
        self._consumers: set[asyncio.Task] = set()
        self._unsubscribe_auth: Callable[[], None] | None = None
        self.sync_error: str | None = None
        self.sync_error_code: str | None = None
        self.snapshots_received = 0

    @classmethod
    def from_config(
        cls,
        config: CloudSyncConfig,
        auth: AuthSignal,
        *,
        session: ClientSession | None = None,
        base_dir: Path | None = None,
    ) -> SyncController:
        """Build a controller backed by a JSON cache file and the HTTP document store."""

        if config.storage_path:
            path = Path(config.storage_path)
        else:
            path = (base_dir or Path.cwd()) / DEFAULT_STORAGE_FILENAME
        local_store = LocalStore(path, key=config.storage_key)
        remote = HttpDocumentStore(config.base_url, session, collection=config.collection) if config.ready else None
        controller = cls(local_store, remote, auth, config=config)
        controller._owns_remote = remote is not None
        return controller

    # ------------------------------------------------------------------
    @property
    def session(self) -> AuthSession | None:
        return self._session

    @property
    def save_status(self) -> SaveStatus:
        return self.scheduler.status

    @property
    def cloud_enabled(self) -> bool:
        return self.remote is not None and self.config.sync_enabled

    async def async_start(self) -> None:
        """Load the local cache and start following the authentication signal."""

        if self._started:
            return
        self._started = True
        self.document = self.local_store.read()
        self._apply_theme(self.document)
        if not self.cloud_enabled:
            _LOGGER.info("Cloud sync disabled; keeping data on this device only")
            return
        self._unsubscribe_auth = self.auth.subscribe(self._handle_auth)

    async def async_stop(self) -> None:
        """Close the subscription, flush pending changes and release resources."""

        if self._unsubscribe_auth is not None:
            self._unsubscribe_auth()
            self._unsubscribe_auth = None
        self._close_subscription()
        for task in list(self._consumers):
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._consumers.clear()
        if self.scheduler.pending:
            await self.scheduler.flush()
        await self.scheduler.cancel()
        if self._owns_remote and self.remote is not None:
            await self.remote.aclose()
        self._started = False

    # ------------------------------------------------------------------
    def update(self, **changes: Any) -> AppDocument:
        """Replace collections, ``settings``/``profile`` fields or extra keys."""

        document = self.document.copy()
        for key, value in changes.items():
            if key in COLLECTIONS:
                document.collections[key] = [dict(record) for record in value]
            elif key == "settings":
                document.settings.update(value)
            elif key == "profile":
                document.profile.update(value)
            else:
                document.extra[key] = value
        self._set_document(document)
        return document

    def mutate(self, mutator: Callable[[AppDocument], AppDocument | None]) -> AppDocument:
        """Apply ``mutator`` to a copy of the document and schedule persistence."""

        document = self.document.copy()
        result = mutator(document)
        document = result if result is not None else document
        self._set_document(document)
        return document

    def restore_backup(self, payload: Any) -> AppDocument:
        document = parse_backup(payload)
        _LOGGER.info("Restoring document from backup")
        self._set_document(document)
        return document

    def export_backup(self) -> dict[str, Any]:
        return export_backup(self.document)

    async def async_flush(self) -> SaveStatus:
        return await self.scheduler.flush()

    async def async_hard_reset(self) -> AppDocument:
        """Erase all data here, and on every device of the signed-in account.

        The remote document is replaced by the defaults flagged as wiped, so
        other devices discard their copies when the snapshot reaches them.
        """

        document = AppDocument()
        session = self._session
        if session is not None and self.remote is not None:
            document.settings["googleSyncEnabled"] = True
            payload = to_wire(document)
            payload[FIELD_WIPED] = True
            payload[FIELD_WIPED_AT] = utcnow_iso()
            try:
                await self.remote.set_document(session.uid, payload)
            except DocumentStoreError as err:
                _LOGGER.error("Hard reset failed for %s (%s): %s", session.uid, err.code, err)
                raise HardResetError(f"could not erase remote data: {err}", reason=err.code) from err
            _LOGGER.info("Remote document for %s reset", session.uid)
        await self.scheduler.cancel()
        self.local_store.clear()
        self.document = document
        self._apply_theme(document)
        return document

    async def async_sign_out(self) -> None:
        """Push the current state one last time, then end the session."""

        if self._session is not None:
            self.document.settings["lastSyncAt"] = utcnow_iso()
            try:
                status = await self.scheduler.flush()
            except Exception as err:  # pragma: no cover - sign-out must not be blocked
                _LOGGER.warning("Final save before sign-out failed: %s", err)
            else:
                if status is SaveStatus.ERROR:
                    _LOGGER.warning("Final save before sign-out failed: %s", self.scheduler.last_error)
        self.auth.sign_out()

    def status(self) -> dict[str, Any]:
        """Return runtime status information for diagnostics."""

        scheduler = self.scheduler
        last_saved_at = scheduler.last_saved_at
        return {
            "enabled": self.config.sync_enabled,
            "configured": self.cloud_enabled,
            "state": self.state.value,
            "uid": self._session.uid if self._session else None,
            "email": self._session.email if self._session else None,
            "save_status": scheduler.status.value,
            "pending": scheduler.pending,
            "deferred": scheduler.deferred,
            "last_saved_at": last_saved_at.isoformat() if last_saved_at else None,
            "last_error": scheduler.last_error,
            "last_error_hint": scheduler.last_error_hint,
            "sync_error": self.sync_error,
            "sync_error_hint": describe_error(self.sync_error_code) if self.sync_error else None,
            "snapshots_received": self.snapshots_received,
            "storage_path": str(self.local_store.path),
            "dark_mode": self.theme.dark_mode,
            "theme": self.theme.as_css(),
        }

    # ------------------------------------------------------------------
    def _set_document(self, document: AppDocument) -> None:
        self.document = document
        self.scheduler.notify_changed()

    def _apply_theme(self, document: AppDocument) -> None:
        theme = ThemeVariables.from_settings(document.settings)
        if theme == self.theme:
            return
        self.theme = theme
        if self._on_theme is not None:
            self._on_theme(theme)

    def _record_error(self, err: DocumentStoreError | None) -> None:
        self.sync_error = str(err) if err is not None else None
        self.sync_error_code = err.code if err is not None else None

    def _close_subscription(self) -> None:
        # In-flight writes run to completion; only the stream is torn down.
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def _handle_auth(self, session: AuthSession | None) -> None:
        previous = self._session
        self._session = session
        self._close_subscription()
        self.last_saved.clear()
        self._record_error(None)
        if session is None:
            self.state = SyncState.SIGNED_OUT
            if previous is not None:
                _LOGGER.info("Signed out of %s; cloud sync paused", previous.uid)
                self._set_document(self.document.with_settings(googleSyncEnabled=False))
            return
        _LOGGER.info("Subscribing to remote document for %s", session.uid)
        self.state = SyncState.SUBSCRIBING
        stream = self.remote.listen(session.uid)
        self._stream = stream
        task = asyncio.get_running_loop().create_task(self._consume(session, stream))
        self._consumers.add(task)
        task.add_done_callback(self._consumers.discard)

    def _is_current(self, session: AuthSession, stream: SnapshotStream) -> bool:
        return self._session is session and self._stream is stream and not stream.closed

    def _settle(self) -> None:
        if self.state is not SyncState.LIVE:
            self.state = SyncState.LIVE
            self.scheduler.resume()

    async def _consume(self, session: AuthSession, stream: SnapshotStream) -> None:
        try:
            async for snapshot in stream:
                if not self._is_current(session, stream):
                    break
                self.snapshots_received += 1
                await self._handle_snapshot(session, stream, snapshot)
        except asyncio.CancelledError:
            raise
        except DocumentStoreError as err:
            _LOGGER.warning("Realtime subscription for %s failed (%s): %s", session.uid, err.code, err)
            if self._is_current(session, stream):
                self._record_error(err)
                self.state = SyncState.OFFLINE
                self.scheduler.resume()
        except Exception as err:
            _LOGGER.exception("Unexpected error handling remote snapshot: %s", err)
            if self._is_current(session, stream):
                self.sync_error = str(err)
                self.sync_error_code = None
                self.state = SyncState.OFFLINE
                self.scheduler.resume()

    async def _handle_snapshot(self, session: AuthSession, stream: SnapshotStream, snapshot: RemoteSnapshot) -> None:
        if not snapshot.exists:
            _LOGGER.info("No remote document for %s yet; creating it from local data", session.uid)
            await self._upload(session, self.document.with_settings(googleSyncEnabled=True))
            if self._is_current(session, stream):
                self._settle()
            return

        if self.echo.is_pending_local_write(snapshot):
            _LOGGER.debug("Dropping snapshot with pending local writes")
            return

        remote_doc = sanitize_snapshot(snapshot.data)

        if snapshot.wiped:
            _LOGGER.info("Remote document for %s was reset on another device; discarding local data", session.uid)
            remote_doc.settings["googleSyncEnabled"] = True
            self.local_store.clear()
            self._set_document(remote_doc)
            self._settle()
            return

        if self.echo.is_echo(remote_doc):
            self._settle()
            return

        local_doc = self.local_store.read()
        if local_doc.has_primary_data() and not remote_doc.has_primary_data():
            _LOGGER.info(
                "Remote document for %s is empty while this device has data; uploading local data instead",
                session.uid,
            )
            await self._upload(session, local_doc.with_settings(googleSyncEnabled=True))
            if self._is_current(session, stream):
                self._settle()
            return

        merged = merge_documents(remote_doc, local_doc)
        _LOGGER.info("Accepted remote changes for %s", session.uid)
        self.last_saved.update(merged)
        self._set_document(merged)
        self._settle()

    async def _upload(self, session: AuthSession, document: AppDocument) -> bool:
        payload = to_wire(document)
        payload[FIELD_UPDATED_AT] = SERVER_TIMESTAMP
        previous = self.last_saved.value
        generation = self.last_saved.update(document)
        try:
            await self.remote.set_document(session.uid, payload)
        except DocumentStoreError as err:
            _LOGGER.warning("Remote write for %s failed (%s): %s", session.uid, err.code, err)
            self.last_saved.restore(previous, generation=generation)
            self._record_error(err)
            return False
        except Exception as err:
            _LOGGER.exception("Unexpected error writing document for %s: %s", session.uid, err)
            self.last_saved.restore(previous, generation=generation)
            self.sync_error = str(err)
            self.sync_error_code = None
            return False
        self._record_error(None)
        return True


__all__ = [
    "CloudSyncConfig",
    "CloudSyncError",
    "HardResetError",
    "OPTIONS_SCHEMA",
    "SyncController",
    "SyncState",
]
