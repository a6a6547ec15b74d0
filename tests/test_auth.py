from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from leciona.cloudsync.auth import AuthSession, AuthSignal, CloudAuthError


def test_session_from_payload() -> None:
    session = AuthSession.from_payload(
        {"uid": " abc123 ", "email": "ana@example.com", "displayName": "Ana", "photoURL": ""}
    )
    assert session == AuthSession(uid="abc123", email="ana@example.com", display_name="Ana")


def test_session_from_payload_requires_uid() -> None:
    with pytest.raises(CloudAuthError):
        AuthSession.from_payload({"email": "ana@example.com"})


def test_signal_is_edge_triggered() -> None:
    signal = AuthSignal()
    listener = MagicMock()
    unsubscribe = signal.subscribe(listener)
    listener.assert_called_once_with(None)

    session = AuthSession(uid="abc123")
    signal.sign_in(session)
    signal.set_session(AuthSession(uid="abc123"))
    assert listener.call_count == 2

    signal.sign_out()
    assert listener.call_args.args == (None,)

    unsubscribe()
    signal.sign_in(session)
    assert listener.call_count == 3
