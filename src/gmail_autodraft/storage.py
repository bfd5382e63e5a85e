"""SQLite persistence for activity records and integration records."""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from .categories import normalize_category
from .errors import IntegrationPermissionError, MailboxError, ValidationError
from .log import get_logger
from .models import ActivityRecord, ActivityStatus, Integration, parse_timestamp, utcnow

logger = get_logger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS activities (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    subject TEXT,
    sender TEXT,
    timestamp TEXT,
    category TEXT,
    status TEXT,
    body TEXT,
    message_id TEXT,
    thread_id TEXT,
    draft_id TEXT,
    draft_url TEXT,
    draft_created_at TEXT,
    scheduled_send_time TEXT,
    sent_at TEXT,
    message_id_after_send TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_activities_user_message
    ON activities (user_id, message_id);

CREATE INDEX IF NOT EXISTS idx_activities_user_status
    ON activities (user_id, status);

CREATE TABLE IF NOT EXISTS integrations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    type TEXT NOT NULL,
    config_json TEXT,
    created_at TEXT,
    updated_at TEXT
);
"""

# Columns update() may touch; id and user_id are immutable.
_UPDATABLE_COLUMNS = {
    "subject",
    "sender",
    "category",
    "status",
    "body",
    "thread_id",
    "draft_id",
    "draft_url",
    "draft_created_at",
    "scheduled_send_time",
    "sent_at",
    "message_id_after_send",
}

_PERMISSION_MARKERS = ("readonly", "permission", "access denied", "unauthorized", "unable to open")


def _to_db(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


class _SQLiteStore:
    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Driver timers run on their own threads; access is serialized by _lock.
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._conn.executescript(_CREATE_TABLES_SQL)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.close()


class ActivityStore(_SQLiteStore):
    """Durable backing for activity records.

    One record per (user, message id): a second create for the same message
    returns the existing record instead of inserting a duplicate.
    """

    # --- public API ---

    def create(self, record: ActivityRecord) -> tuple[ActivityRecord, bool]:
        """Insert the record; returns ``(stored_record, created)``."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "INSERT OR IGNORE INTO activities (id, user_id, subject, sender, timestamp, category, status, "
                "body, message_id, thread_id, draft_id, draft_url, draft_created_at, scheduled_send_time, "
                "sent_at, message_id_after_send) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.user_id,
                    record.subject,
                    record.sender,
                    _to_db(record.timestamp),
                    _to_db(record.category),
                    _to_db(record.status),
                    record.body,
                    record.message_id,
                    record.thread_id,
                    record.draft_id,
                    record.draft_url,
                    _to_db(record.draft_created_at),
                    _to_db(record.scheduled_send_time),
                    _to_db(record.sent_at),
                    record.message_id_after_send,
                ),
            )
            created = cursor.rowcount == 1

        if created:
            logger.info("Activity recorded", activity_id=record.id, message_id=record.message_id)
            return record, True

        existing = self.find_by_message_id(record.user_id, record.message_id) if record.message_id else None
        if existing is None:
            raise ValidationError(f"Activity {record.id} could not be stored")
        logger.info("Activity already recorded", activity_id=existing.id, message_id=record.message_id)
        return existing, False

    def new_record(self, user_id: str, **fields: Any) -> ActivityRecord:
        """Build an unsaved record with a fresh id and current timestamp."""
        fields.setdefault("status", ActivityStatus.CLASSIFIED)
        return ActivityRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            timestamp=utcnow(),
            subject=fields.pop("subject", "") or "",
            sender=fields.pop("sender", "") or "",
            category=normalize_category(fields.pop("category", None)),
            **fields,
        )

    def get(self, activity_id: str) -> ActivityRecord | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM activities WHERE id = ?", (activity_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def find_by_message_id(self, user_id: str, message_id: str) -> ActivityRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM activities WHERE user_id = ? AND message_id = ? LIMIT 1",
                (user_id, message_id),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def update(self, activity_id: str, **fields: Any) -> ActivityRecord | None:
        """Update the given columns in place and return the fresh record."""
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update activity columns: {', '.join(sorted(unknown))}")
        if "category" in fields:
            fields["category"] = normalize_category(fields["category"])

        if fields:
            assignments = ", ".join(f"{column} = ?" for column in fields)
            with self._lock, self._conn:
                self._conn.execute(
                    f"UPDATE activities SET {assignments} WHERE id = ?",
                    (*[_to_db(v) for v in fields.values()], activity_id),
                )
        return self.get(activity_id)

    def list_by_status(self, user_id: str, status: ActivityStatus) -> list[ActivityRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM activities WHERE user_id = ? AND status = ? ORDER BY timestamp",
                (user_id, _to_db(status)),
            ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def list_recent(self, user_id: str | None = None, limit: int = 25) -> list[ActivityRecord]:
        with self._lock:
            if user_id is not None:
                rows = self._conn.execute(
                    "SELECT * FROM activities WHERE user_id = ? ORDER BY timestamp DESC LIMIT ?",
                    (user_id, limit),
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT * FROM activities ORDER BY timestamp DESC LIMIT ?", (limit,)
                ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def get_info(self) -> dict:
        """Return store statistics."""
        file_size = self.db_path.stat().st_size if self.db_path.exists() else 0
        with self._lock:
            total = self._conn.execute("SELECT COUNT(*) AS c FROM activities").fetchone()["c"]
            status_rows = self._conn.execute(
                "SELECT status, COUNT(*) AS c FROM activities GROUP BY status"
            ).fetchall()
            last_row = self._conn.execute("SELECT MAX(timestamp) AS t FROM activities").fetchone()

        return {
            "db_file_size": file_size,
            "activity_count": total,
            "by_status": {r["status"]: r["c"] for r in status_rows},
            "last_activity": last_row["t"],
        }

    # --- helpers ---

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ActivityRecord:
        return ActivityRecord(
            id=row["id"],
            user_id=row["user_id"],
            subject=row["subject"] or "",
            sender=row["sender"] or "",
            timestamp=parse_timestamp(row["timestamp"]) or utcnow(),
            category=normalize_category(row["category"]),
            status=ActivityStatus(row["status"]),
            body=row["body"],
            message_id=row["message_id"],
            thread_id=row["thread_id"],
            draft_id=row["draft_id"],
            draft_url=row["draft_url"],
            draft_created_at=parse_timestamp(row["draft_created_at"]),
            scheduled_send_time=row["scheduled_send_time"],
            sent_at=parse_timestamp(row["sent_at"]),
            message_id_after_send=row["message_id_after_send"],
        )


class IntegrationStore(_SQLiteStore):
    """Durable integration records (one per user and provider type)."""

    @staticmethod
    def integration_id(user_id: str, type_: str) -> str:
        return f"{user_id}-{type_}"

    def get(self, user_id: str, type_: str = "gmail") -> Integration | None:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT * FROM integrations WHERE id = ?", (self.integration_id(user_id, type_),)
                ).fetchone()
        except sqlite3.DatabaseError as exc:
            if any(marker in str(exc).lower() for marker in _PERMISSION_MARKERS):
                raise IntegrationPermissionError() from exc
            raise MailboxError(f"Failed to read {type_} integration: {exc}") from exc

        if row is None:
            return None
        return Integration(
            id=row["id"],
            user_id=row["user_id"],
            type=row["type"],
            config=json.loads(row["config_json"] or "{}"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def save(self, user_id: str, type_: str, config: dict) -> Integration:
        now = utcnow().isoformat()
        integration_id = self.integration_id(user_id, type_)
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO integrations (id, user_id, type, config_json, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(id) DO UPDATE SET config_json = excluded.config_json, "
                    "updated_at = excluded.updated_at",
                    (integration_id, user_id, type_, json.dumps(config), now, now),
                )
        except sqlite3.DatabaseError as exc:
            if any(marker in str(exc).lower() for marker in _PERMISSION_MARKERS):
                raise IntegrationPermissionError() from exc
            raise MailboxError(f"Failed to save {type_} integration: {exc}") from exc
        return self.get(user_id, type_)

    def remove(self, user_id: str, type_: str = "gmail") -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM integrations WHERE id = ?", (self.integration_id(user_id, type_),))

    def update_tokens(self, user_id: str, access_token: str, refresh_token: str | None) -> bool:
        """Propagate a refreshed token pair into the user's gmail integration."""
        integration = self.get(user_id, "gmail")
        if integration is None:
            return False
        config = dict(integration.config)
        config["accessToken"] = access_token
        if refresh_token:
            config["refreshToken"] = refresh_token
        self.save(user_id, "gmail", config)
        return True

    def refresh(self, user_id: str, type_: str = "gmail") -> Integration:
        """Re-save the integration so its record is rewritten with current permissions."""
        integration = self.get(user_id, type_)
        if integration is None:
            raise MailboxError(f"No {type_} integration found for user {user_id}")
        logger.info("Refreshing integration", user_id=user_id, type=type_)
        config = dict(integration.config)
        config["refreshedAt"] = utcnow().isoformat()
        return self.save(user_id, type_, config)
