from __future__ import annotations

from leciona.cloudsync.conflict import merge_collection, merge_documents
from leciona.models import AppDocument


def _by_id(records):
    return {record["id"]: record for record in records}


def test_merge_is_idempotent_for_identical_collections() -> None:
    records = [{"id": "a", "title": "Math test"}, {"id": "b", "title": "Essay"}]
    merged = merge_collection(records, [dict(item) for item in records])
    assert _by_id(merged) == _by_id(records)
    assert len(merged) == 2


def test_local_only_records_are_kept() -> None:
    remote = [{"id": "a", "title": "Remote"}]
    local = [{"id": "b", "title": "Created offline"}]
    merged = _by_id(merge_collection(remote, local))
    assert set(merged) == {"a", "b"}
    assert merged["b"]["title"] == "Created offline"


def test_live_local_record_never_overrides_remote() -> None:
    remote = [{"id": "a", "title": "Edited elsewhere"}]
    local = [{"id": "a", "title": "Edited here"}]
    merged = merge_collection(remote, local)
    assert merged == [{"id": "a", "title": "Edited elsewhere"}]


def test_local_tombstone_beats_live_remote() -> None:
    remote = [{"id": "a", "title": "Math test", "deleted": False}]
    local = [{"id": "a", "title": "Math test", "deleted": True, "deletedAt": "2024-03-01T10:00:00.000Z"}]
    merged = merge_collection(remote, local)
    assert merged[0]["deleted"] is True
    assert merged[0]["deletedAt"] == "2024-03-01T10:00:00.000Z"


def test_remote_tombstone_is_not_resurrected_by_live_local() -> None:
    local = [{"id": "a", "title": "Math test", "deleted": False}]
    remote = [{"id": "a", "title": "Math test", "deleted": True, "deletedAt": "2024-03-01"}]
    merged = merge_collection(remote, local)
    assert merged == [{"id": "a", "title": "Math test", "deleted": True, "deletedAt": "2024-03-01"}]


def test_double_tombstone_keeps_later_deletion() -> None:
    remote = [{"id": "a", "deleted": True, "deletedAt": "2024-03-01T10:00:00Z", "side": "remote"}]
    local = [{"id": "a", "deleted": True, "deletedAt": "2024-03-02T08:00:00Z", "side": "local"}]
    assert merge_collection(remote, local)[0]["side"] == "local"
    assert merge_collection(local, remote)[0]["side"] == "local"


def test_double_tombstone_tie_keeps_remote() -> None:
    remote = [{"id": "a", "deleted": True, "deletedAt": "2024-03-01T10:00:00Z", "side": "remote"}]
    local = [{"id": "a", "deleted": True, "deletedAt": "2024-03-01T10:00:00Z", "side": "local"}]
    assert merge_collection(remote, local)[0]["side"] == "remote"


def test_double_tombstone_missing_or_invalid_timestamps() -> None:
    remote_missing = [{"id": "a", "deleted": True, "side": "remote"}]
    local_dated = [{"id": "a", "deleted": True, "deletedAt": "2024-01-01", "side": "local"}]
    assert merge_collection(remote_missing, local_dated)[0]["side"] == "local"

    remote_dated = [{"id": "a", "deleted": True, "deletedAt": "2024-01-01", "side": "remote"}]
    local_garbage = [{"id": "a", "deleted": True, "deletedAt": "yesterday", "side": "local"}]
    assert merge_collection(remote_dated, local_garbage)[0]["side"] == "remote"


def test_merge_handles_missing_collections() -> None:
    assert merge_collection(None, None) == []
    assert merge_collection(None, [{"id": "x"}]) == [{"id": "x"}]


def test_merge_documents_flags_cloud_sync_and_keeps_remote_profile() -> None:
    remote = AppDocument.from_payload(
        {
            "profile": {"name": "Ana", "subjects": ["Math"], "setupCompleted": True},
            "schools": [{"id": "s1", "name": "Escola A"}],
            "settings": {"themeColor": "#ff0000"},
        }
    )
    local = AppDocument.from_payload(
        {
            "profile": {"name": "Old name"},
            "schools": [{"id": "s2", "name": "Escola B"}],
            "events": [{"id": "e1", "deleted": True, "deletedAt": "2024-03-01"}],
        }
    )

    merged = merge_documents(remote, local)

    assert merged.profile["name"] == "Ana"
    assert {item["id"] for item in merged.collections["schools"]} == {"s1", "s2"}
    assert merged.collections["events"] == [{"id": "e1", "deleted": True, "deletedAt": "2024-03-01"}]
    assert merged.settings["googleSyncEnabled"] is True
    assert merged.settings["themeColor"] == "#ff0000"
    assert remote.settings["googleSyncEnabled"] is False
