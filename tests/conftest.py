import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest

from leciona.cloudsync import (
    AuthSession,
    AuthSignal,
    CloudSyncConfig,
    DocumentStore,
    MemoryDocumentStore,
    SyncController,
)
from leciona.storage import LocalStore

UID = "teacher-1"


async def drain(rounds: int = 50) -> None:
    """Let queued snapshots, timers and writes run to completion."""

    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def local_store(tmp_path: Path) -> LocalStore:
    return LocalStore(tmp_path / "leciona.json")


@pytest.fixture
def remote_store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def session() -> AuthSession:
    return AuthSession(uid=UID, email="prof@example.com", display_name="Ana Souza")


@pytest.fixture
def auth(session: AuthSession) -> AuthSignal:
    return AuthSignal(session)


@pytest.fixture
def make_controller(
    local_store: LocalStore,
    remote_store: MemoryDocumentStore,
    auth: AuthSignal,
) -> Callable[..., SyncController]:
    def _make(
        *,
        store: LocalStore | None = None,
        remote: DocumentStore | None = None,
        signal: AuthSignal | None = None,
        debounce: float = 0.0,
    ) -> SyncController:
        return SyncController(
            store or local_store,
            remote or remote_store.client(),
            signal or auth,
            config=CloudSyncConfig(debounce_seconds=debounce),
        )

    return _make


@pytest.fixture
def settle() -> Callable[..., object]:
    return drain
