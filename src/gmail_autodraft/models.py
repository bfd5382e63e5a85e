"""Data models for Gmail Autodraft."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from .categories import Category
from .constants import SESSION_MAX_AGE_DAYS, TOKEN_EXPIRY_SKEW


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce a stored timestamp into an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), ISO-8601 strings, and
    epoch values in seconds or milliseconds (as numbers or digit strings).
    Returns None for anything else.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            value = int(text)
        else:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) >= 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    return None


def format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str | None = None


@dataclass
class CredentialRecord:
    """OAuth token pair plus the expiry of the most recent grant."""

    access_token: str
    refresh_token: str | None
    expiry: datetime
    obtained_at: datetime | None = None

    @property
    def renewable(self) -> bool:
        return bool(self.refresh_token)

    def is_expired(self, now: datetime | None = None, skew: int = TOKEN_EXPIRY_SKEW) -> bool:
        now = now or utcnow()
        return self.expiry - timedelta(seconds=skew) <= now


@dataclass
class SessionRecord:
    """Who background processing runs for."""

    subject_id: str
    subject_contact: str
    last_active_at: datetime

    def is_valid(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return now - self.last_active_at < timedelta(days=SESSION_MAX_AGE_DAYS)


@dataclass
class MessageEnvelope:
    """A mailbox message as seen by the pipeline."""

    id: str
    thread_id: str
    subject: str
    sender: str  # Full From header value
    snippet: str = ""
    internal_date: str = ""  # epoch milliseconds, as Gmail returns it
    labels: list[str] = field(default_factory=list)
    rfc_message_id: str = ""  # Message-ID header


class ActivityStatus(str, Enum):
    CLASSIFIED = "classified"
    DRAFT_CREATED = "draft_created"
    DRAFT_SENT = "draft_sent"


@dataclass
class ActivityRecord:
    """Durable log entry for one inbound message."""

    id: str
    user_id: str
    subject: str
    sender: str
    timestamp: datetime
    category: Category
    status: ActivityStatus
    body: str | None = None
    message_id: str | None = None
    thread_id: str | None = None
    draft_id: str | None = None
    draft_url: str | None = None
    draft_created_at: datetime | None = None
    scheduled_send_time: Any = None  # raw stored value; see parse_timestamp
    sent_at: datetime | None = None
    message_id_after_send: str | None = None


@dataclass
class UserPreferences:
    auto_classify: bool = True
    auto_draft: bool = True
    signature: str = ""
    auto_send_drafts: bool = True
    auto_send_delay: int = 0  # minutes
    language: str = "fr"
    from_email: str | None = None
    shop_domain: str | None = None
    shop_access_token: str | None = None

    @classmethod
    def from_dict(cls, data: dict | None, language: str = "fr") -> UserPreferences:
        """Build preferences from a stored profile, defaulting anything unset.

        Flags default to enabled unless explicitly false.
        """
        data = data or {}
        try:
            delay = max(0, int(data.get("autoSendDelay") or 0))
        except (TypeError, ValueError):
            delay = 0
        return cls(
            auto_classify=data.get("autoClassify") is not False,
            auto_draft=data.get("autoDraft") is not False,
            signature=data.get("signature") or "",
            auto_send_drafts=data.get("autoSendDrafts") is not False,
            auto_send_delay=delay,
            language=data.get("language") or language,
            from_email=data.get("fromEmail"),
            shop_domain=data.get("shopDomain"),
            shop_access_token=data.get("shopAccessToken"),
        )


@dataclass
class Integration:
    id: str
    user_id: str
    type: str
    config: dict = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: utcnow().isoformat())
    updated_at: str = field(default_factory=lambda: utcnow().isoformat())


@dataclass
class CreatedDraft:
    """Identifiers returned by the provider for a newly created draft."""

    draft_id: str
    message_id: str | None = None

    @property
    def ui_id(self) -> str:
        """Id the Gmail web UI addresses drafts by."""
        return self.message_id or self.draft_id


@dataclass
class SentMessage:
    id: str
    thread_id: str = ""


@dataclass
class PipelineReport:
    fetched: int = 0
    processed: int = 0
    skipped: int = 0
    drafted: int = 0
    scheduled: int = 0
    failed: int = 0
