from __future__ import annotations

import json
from datetime import UTC, datetime

from leciona.cloudsync.echo import EchoCanceller, LastSavedSnapshot, is_echo, json_default, normalize, to_wire
from leciona.cloudsync.events import SERVER_TIMESTAMP, RemoteSnapshot, RemoteTimestamp
from leciona.models import AppDocument


def test_to_wire_drops_none_values_recursively() -> None:
    payload = {"a": None, "b": {"c": None, "d": 1}, "e": [{"f": None}], "g": (1, 2)}
    assert to_wire(payload) == {"b": {"d": 1}, "e": [{}], "g": [1, 2]}


def test_json_default_encodes_tokens_and_timestamps() -> None:
    encoded = json.dumps(
        {
            "updatedAt": SERVER_TIMESTAMP,
            "ts": RemoteTimestamp(seconds=5, nanos=7),
            "dt": datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC),
        },
        default=json_default,
    )
    decoded = json.loads(encoded)
    assert decoded["updatedAt"] == {".sv": "timestamp"}
    assert decoded["ts"] == {"_seconds": 5, "_nanoseconds": 7}
    assert decoded["dt"] == "2024-01-02T03:04:05.000Z"


def test_normalize_collapses_absent_and_none() -> None:
    with_none = AppDocument.from_payload({"schools": [{"id": "s1", "address": None}]})
    without = AppDocument.from_payload({"schools": [{"id": "s1"}]})
    assert normalize(with_none) == normalize(without)


def test_last_saved_snapshot_matches_and_restores() -> None:
    snapshot = LastSavedSnapshot()
    document = AppDocument.from_payload({"schools": [{"id": "s1"}]})
    assert snapshot.matches(document) is False

    previous = snapshot.value
    generation = snapshot.update(document)
    assert snapshot.matches(document.copy())
    assert snapshot.restore(previous, generation=generation) is True
    assert snapshot.value is None


def test_restore_is_skipped_after_newer_update() -> None:
    snapshot = LastSavedSnapshot()
    first = AppDocument.from_payload({"schools": [{"id": "s1"}]})
    second = AppDocument.from_payload({"schools": [{"id": "s2"}]})
    generation = snapshot.update(first)
    snapshot.update(second)
    assert snapshot.restore(None, generation=generation) is False
    assert snapshot.matches(second)


def test_snapshot_is_isolated_from_later_mutation() -> None:
    snapshot = LastSavedSnapshot()
    document = AppDocument.from_payload({"schools": [{"id": "s1"}]})
    snapshot.update(document)
    document.collections["schools"].append({"id": "s2"})
    assert not snapshot.matches(document)


def test_echo_canceller_decisions() -> None:
    snapshot = LastSavedSnapshot()
    canceller = EchoCanceller(snapshot)
    document = AppDocument.from_payload({"logs": [{"id": "l1", "content": "Aula 1"}]})
    snapshot.update(document)

    assert canceller.is_echo(document.copy())
    assert is_echo(document, snapshot)
    assert not canceller.is_echo(AppDocument())

    pending = RemoteSnapshot(exists=True, data={"schools": []}, has_pending_writes=True)
    pending_wipe = RemoteSnapshot(exists=True, data={"wiped": True}, has_pending_writes=True)
    committed = RemoteSnapshot(exists=True, data={"schools": []})
    assert canceller.is_pending_local_write(pending)
    assert not canceller.is_pending_local_write(pending_wipe)
    assert not canceller.is_pending_local_write(committed)
