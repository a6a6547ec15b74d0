from __future__ import annotations

from typing import Any


STORAGE_KEY = "leciona-data-v1"
DEFAULT_STORAGE_FILENAME = "leciona.json"

# Remote documents live under this collection, addressed by the account uid.
REMOTE_COLLECTION = "users"

DEFAULT_DEBOUNCE_SECONDS = 2.0

# Options consumed by CloudSyncConfig.from_options
CONF_SYNC_ENABLED = "sync_enabled"
CONF_BASE_URL = "base_url"
CONF_COLLECTION = "collection"
CONF_DEBOUNCE_SECONDS = "debounce_seconds"
CONF_STORAGE_KEY = "storage_key"
CONF_STORAGE_PATH = "storage_path"

# Transport metadata carried by the remote envelope only
FIELD_UPDATED_AT = "updatedAt"
FIELD_WIPED = "wiped"
FIELD_WIPED_AT = "wipedAt"
ENVELOPE_FIELDS: tuple[str, ...] = (FIELD_UPDATED_AT, FIELD_WIPED, FIELD_WIPED_AT)

COLLECTIONS: tuple[str, ...] = (
    "schools",
    "students",
    "classRecords",
    "schedules",
    "scheduleVersions",
    "logs",
    "events",
    "calendars",
    "reminders",
    "grades",
    "customAssessments",
    "gradingConfigs",
)

# Collections inspected by upstream protection when deciding whether a side "has data".
PRIMARY_COLLECTIONS: tuple[str, ...] = ("schools", "schedules", "logs", "students")

SCHEDULE_MIGRATION_ACTIVE_FROM = "2024-01-01"
SCHEDULE_MIGRATION_NAME = "Grade Inicial"

BACKUP_APP_NAME = "LecionaApp"
BACKUP_VERSION = "1.0"

DEFAULT_PROFILE: dict[str, Any] = {
    "name": "",
    "subjects": [],
    "setupCompleted": False,
}

DEFAULT_ADVANCED_MODES: dict[str, Any] = {
    "individualOccurrence": False,
    "grades": False,
}

DEFAULT_SETTINGS: dict[str, Any] = {
    "alertBeforeMinutes": 5,
    "alertAfterLesson": False,
    "alertAfterShift": True,
    "alertAfterShiftDelay": 0,
    "alertType": "notification",
    "alertNotificationStyle": "silent",
    "isPrivateTeacher": False,
    "googleSyncEnabled": False,
    "showQuickStartGuide": True,
    "themeColor": "#2563eb",
    "darkMode": False,
    "showDailyQuote": True,
    "advancedModes": DEFAULT_ADVANCED_MODES,
    "termsAccepted": False,
}
