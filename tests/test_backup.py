from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from leciona.backup import BackupError, export_backup, parse_backup, read_backup, write_backup
from leciona.models import AppDocument


def test_export_backup_envelope() -> None:
    document = AppDocument.from_payload({"grades": [{"id": "g1", "value": 9.5}]})
    backup = export_backup(document, now=datetime(2024, 6, 1, 12, 30, tzinfo=UTC))

    assert backup["metadata"] == {
        "version": "1.0",
        "timestamp": "2024-06-01T12:30:00.000Z",
        "app": "LecionaApp",
    }
    assert backup["data"]["grades"] == [{"id": "g1", "value": 9.5}]


def test_parse_backup_overlays_defaults() -> None:
    document = parse_backup(
        {
            "metadata": {"version": "1.0", "timestamp": "2024-06-01T12:30:00.000Z", "app": "LecionaApp"},
            "data": {"settings": {"alertBeforeMinutes": 15, "advancedModes": {"grades": True}}},
        }
    )
    assert document.settings["alertBeforeMinutes"] == 15
    assert document.settings["themeColor"] == "#2563eb"
    assert document.settings["advancedModes"] == {"individualOccurrence": False, "grades": True}
    assert document.collections["schools"] == []


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        {"data": {}},
        {"metadata": {"app": "LecionaApp"}},
        {"metadata": {"app": "OtherApp", "version": "1.0"}, "data": {}},
    ],
)
def test_parse_backup_rejects_foreign_payloads(payload) -> None:
    with pytest.raises(BackupError):
        parse_backup(payload)


def test_parse_backup_tolerates_other_versions(caplog) -> None:
    with caplog.at_level("WARNING"):
        document = parse_backup({"metadata": {"app": "LecionaApp", "version": "0.9"}, "data": {"logs": [{"id": "l1"}]}})
    assert document.collections["logs"] == [{"id": "l1"}]
    assert "unexpected version 0.9" in caplog.text


def test_backup_file_round_trip(tmp_path: Path) -> None:
    document = AppDocument.from_payload({"calendars": [{"id": "cal1", "name": "2024"}]})
    path = write_backup(tmp_path / "exports" / "leciona-backup.json", document)
    assert read_backup(path) == document

    broken = tmp_path / "broken.json"
    broken.write_text("not json", encoding="utf-8")
    with pytest.raises(BackupError):
        read_backup(broken)
