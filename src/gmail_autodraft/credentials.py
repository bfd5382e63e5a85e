"""File-backed credential and session records."""

from __future__ import annotations

import json
import os
import tempfile
from datetime import timedelta
from pathlib import Path

from .log import get_logger
from .models import CredentialRecord, SessionRecord, TokenPair, parse_timestamp, utcnow

logger = get_logger(__name__)


def _write_json_atomic(path: Path, data: dict) -> None:
    """Write JSON so readers see either the old file or the new one, never half."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _read_json(path: Path) -> dict | None:
    if not path.exists():
        return None
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Unreadable record file", path=str(path), error=str(exc))
        return None
    return data if isinstance(data, dict) else None


class CredentialStore:
    """Persists the mailbox OAuth token pair."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def save(self, tokens: TokenPair, ttl_seconds: int) -> CredentialRecord:
        """Store the pair with ``expiry = now + ttl_seconds``, replacing any prior record."""
        now = utcnow()
        record = CredentialRecord(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expiry=now + timedelta(seconds=ttl_seconds),
            obtained_at=now,
        )
        _write_json_atomic(
            self.path,
            {
                "access_token": record.access_token,
                "refresh_token": record.refresh_token,
                "expiry": record.expiry.isoformat(),
                "obtained_at": now.isoformat(),
            },
        )
        logger.info("Mailbox tokens stored", renewable=record.renewable, expiry=record.expiry.isoformat())
        return record

    def load(self) -> CredentialRecord | None:
        data = _read_json(self.path)
        if not data or not data.get("access_token"):
            return None
        expiry = parse_timestamp(data.get("expiry")) or utcnow()
        return CredentialRecord(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or None,
            expiry=expiry,
            obtained_at=parse_timestamp(data.get("obtained_at")),
        )

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.info("Mailbox tokens cleared")

    def has_credentials(self) -> bool:
        return self.load() is not None


class SessionStore:
    """The "active session" record background processing runs for.

    Sign-out never removes it: background automation outlives the UI session.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def store(self, subject_id: str, subject_contact: str) -> SessionRecord:
        record = SessionRecord(subject_id=subject_id, subject_contact=subject_contact, last_active_at=utcnow())
        self._write(record)
        logger.info("Session stored for background processing", user_id=subject_id)
        return record

    def load(self) -> SessionRecord | None:
        data = _read_json(self.path)
        if not data or not data.get("subject_id") or not data.get("subject_contact"):
            return None
        last_active = parse_timestamp(data.get("last_active_at"))
        if last_active is None:
            return None
        return SessionRecord(
            subject_id=data["subject_id"],
            subject_contact=data["subject_contact"],
            last_active_at=last_active,
        )

    def touch(self) -> SessionRecord | None:
        """Refresh ``last_active_at`` on the stored session, if any."""
        record = self.load()
        if record is None:
            return None
        record.last_active_at = utcnow()
        self._write(record)
        return record

    def load_valid(self) -> SessionRecord | None:
        record = self.load()
        if record is None or not record.is_valid():
            return None
        return record

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()

    def _write(self, record: SessionRecord) -> None:
        _write_json_atomic(
            self.path,
            {
                "subject_id": record.subject_id,
                "subject_contact": record.subject_contact,
                "last_active_at": record.last_active_at.isoformat(),
            },
        )
