from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from datetime import UTC, datetime
from enum import Enum

from ..const import DEFAULT_DEBOUNCE_SECONDS, FIELD_UPDATED_AT
from ..models import AppDocument
from ..storage import LocalStore
from .auth import AuthSession
from .echo import LastSavedSnapshot, to_wire
from .events import SERVER_TIMESTAMP
from .remote import DocumentStore, DocumentStoreError, describe_error

_LOGGER = logging.getLogger(__name__)


class SaveStatus(str, Enum):
    """Coarse persistence status rendered by the UI."""

    SAVED = "saved"
    PENDING = "pending"
    SAVING = "saving"
    ERROR = "error"


StatusListener = Callable[[SaveStatus], None]


class DebouncedPersistence:
    """Coalesce bursts of in-memory mutations into bounded-rate persistence.

    Every :meth:`notify_changed` restarts the quiet-period timer. When it
    fires the document is written to the local cache, the persisted hook runs
    and, for a signed-in session, the document is uploaded unless it matches
    the last saved snapshot. The snapshot is updated before the upload is
    issued so an immediate echo is recognised.
    """

    def __init__(
        self,
        *,
        local_store: LocalStore,
        remote: DocumentStore | None,
        last_saved: LastSavedSnapshot,
        document_provider: Callable[[], AppDocument],
        session_provider: Callable[[], AuthSession | None],
        delay: float = DEFAULT_DEBOUNCE_SECONDS,
        on_persisted: Callable[[AppDocument], None] | None = None,
        upload_gate: Callable[[], bool] | None = None,
    ) -> None:
        self.local_store = local_store
        self.remote = remote
        self.last_saved = last_saved
        self.delay = delay
        self._document_provider = document_provider
        self._session_provider = session_provider
        self._on_persisted = on_persisted
        self._upload_gate = upload_gate
        self._timer: asyncio.Task | None = None
        self._deferred = False
        self._listeners: list[StatusListener] = []
        self.status = SaveStatus.SAVED
        self.last_error: str | None = None
        self.last_error_code: str | None = None
        self.last_saved_at: datetime | None = None

    # ------------------------------------------------------------------
    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def deferred(self) -> bool:
        return self._deferred

    @property
    def last_error_hint(self) -> str | None:
        if self.last_error is None:
            return None
        return describe_error(self.last_error_code)

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            with suppress(ValueError):
                self._listeners.remove(listener)

        return _remove

    def _set_status(self, status: SaveStatus) -> None:
        if status is self.status:
            return
        self.status = status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:  # pragma: no cover - listeners must not break persistence
                _LOGGER.exception("Save status listener raised")

    # ------------------------------------------------------------------
    def notify_changed(self) -> None:
        """Restart the quiet-period timer after an in-memory mutation."""

        self._cancel_timer()
        self._set_status(SaveStatus.PENDING)
        self._timer = asyncio.get_running_loop().create_task(self._delayed_fire())

    def resume(self) -> None:
        """Run an upload that was held back while the controller was subscribing."""

        if not self._deferred or self.pending:
            return
        self._deferred = False
        self._timer = asyncio.get_running_loop().create_task(self._delayed_fire(0))

    async def flush(self) -> SaveStatus:
        """Persist immediately, skipping any remaining quiet period."""

        self._cancel_timer()
        return await self._fire()

    async def cancel(self) -> None:
        task = self._timer
        self._timer = None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done() and self._timer is not asyncio.current_task():
            self._timer.cancel()
        self._timer = None

    async def _delayed_fire(self, delay: float | None = None) -> None:
        await asyncio.sleep(self.delay if delay is None else delay)
        if self._timer is asyncio.current_task():
            self._timer = None
        try:
            await self._fire()
        except asyncio.CancelledError:
            raise
        except Exception as err:
            _LOGGER.exception("Unexpected error while persisting document: %s", err)
            self.last_error = str(err)
            self.last_error_code = None
            self._set_status(SaveStatus.ERROR)

    async def _fire(self) -> SaveStatus:
        document = self._document_provider()
        self._set_status(SaveStatus.SAVING)
        self.local_store.save(document)
        if self._on_persisted is not None:
            self._on_persisted(document)

        session = self._session_provider()
        if session is None or self.remote is None:
            self._mark_saved()
            return self.status

        if self._upload_gate is not None and not self._upload_gate():
            _LOGGER.debug("Upload deferred until the remote subscription settles")
            self._deferred = True
            self._set_status(SaveStatus.PENDING)
            return self.status

        if self.last_saved.matches(document):
            _LOGGER.debug("Document unchanged since last save; skipping upload")
            self._mark_saved()
            return self.status

        payload = to_wire(document)
        payload[FIELD_UPDATED_AT] = SERVER_TIMESTAMP
        previous = self.last_saved.value
        generation = self.last_saved.update(document)
        try:
            await self.remote.set_document(session.uid, payload)
        except DocumentStoreError as err:
            _LOGGER.warning("Remote write failed (%s): %s", err.code, err)
            self.last_saved.restore(previous, generation=generation)
            self.last_error = str(err)
            self.last_error_code = err.code
            self._set_status(SaveStatus.ERROR)
            return self.status
        except Exception as err:
            _LOGGER.exception("Unexpected error uploading document: %s", err)
            self.last_saved.restore(previous, generation=generation)
            self.last_error = str(err)
            self.last_error_code = None
            self._set_status(SaveStatus.ERROR)
            return self.status
        _LOGGER.debug("Uploaded document for %s", session.uid)
        self._mark_saved()
        return self.status

    def _mark_saved(self) -> None:
        self.last_error = None
        self.last_error_code = None
        self.last_saved_at = datetime.now(tz=UTC)
        self._set_status(SaveStatus.SAVED)


__all__ = ["DebouncedPersistence", "SaveStatus", "StatusListener"]
