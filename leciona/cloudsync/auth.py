"""Authentication signal consumed by the sync controller."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

_LOGGER = logging.getLogger(__name__)

AuthListener = Callable[["AuthSession | None"], None]


class CloudAuthError(RuntimeError):
    """Raised when an identity payload is missing required fields."""


@dataclass(slots=True, frozen=True)
class AuthSession:
    """A signed-in identity: a stable uid plus display metadata."""

    uid: str
    email: str | None = None
    display_name: str | None = None
    photo_url: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> AuthSession:
        uid = str(payload.get("uid") or payload.get("user_id") or payload.get("id") or "").strip()
        if not uid:
            raise CloudAuthError("uid missing from identity payload")
        email = payload.get("email")
        name = payload.get("displayName") or payload.get("display_name") or payload.get("name")
        photo = payload.get("photoURL") or payload.get("photo_url")
        return cls(
            uid=uid,
            email=str(email).strip() or None if email else None,
            display_name=str(name).strip() or None if name else None,
            photo_url=str(photo).strip() or None if photo else None,
        )


class AuthSignal:
    """Edge-triggered observable yielding the current session or ``None``.

    Listeners are called with the current value when they subscribe and then
    on every change. Setting the same session again does not notify.
    """

    def __init__(self, session: AuthSession | None = None) -> None:
        self._session = session
        self._listeners: list[AuthListener] = []

    @property
    def session(self) -> AuthSession | None:
        return self._session

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self._session)

        def _unsubscribe() -> None:
            with suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    def set_session(self, session: AuthSession | None) -> None:
        if session == self._session:
            return
        previous, self._session = self._session, session
        _LOGGER.debug(
            "Auth state changed: %s -> %s",
            previous.uid if previous else None,
            session.uid if session else None,
        )
        for listener in list(self._listeners):
            listener(session)

    def sign_in(self, session: AuthSession) -> None:
        self.set_session(session)

    def sign_out(self) -> None:
        self.set_session(None)


__all__ = ["AuthListener", "AuthSession", "AuthSignal", "CloudAuthError"]
