"""Layered guard against processing a message or creating a draft twice."""

from __future__ import annotations

import threading

from .log import get_logger
from .models import ActivityRecord

logger = get_logger(__name__)


class IdempotencyTracker:
    """Processed-message and created-draft keys for one driver.

    Lookups go memory first (message id, then the (subject, date) composite)
    and fall back to the activity store's unique message id, so a restart or
    a second process does not reprocess what is already recorded.
    """

    def __init__(self, activities=None) -> None:
        self.activities = activities
        self._lock = threading.Lock()
        self._ids: set[str] = set()
        self._composites: set[tuple[str, str]] = set()
        self._drafts_by_message: dict[str, str] = {}
        self._drafts_by_reply: dict[tuple[str, str], str] = {}

    def seen(self, message_id: str) -> bool:
        """Cheap in-memory check, used before fetching message details."""
        with self._lock:
            return message_id in self._ids

    def check(self, user_id: str, message_id: str, subject: str = "", date: str = "") -> ActivityRecord | bool:
        """Return a truthy value when the message was already processed.

        A durable hit returns the stored record and is copied into memory.
        """
        composite = (subject, date)
        with self._lock:
            if message_id in self._ids:
                return True
            if subject and date and composite in self._composites:
                logger.debug("Duplicate by subject and date", message_id=message_id)
                return True

        if self.activities is None:
            return False
        existing = self.activities.find_by_message_id(user_id, message_id)
        if existing is None:
            return False

        logger.debug("Message already recorded", message_id=message_id, activity_id=existing.id)
        with self._lock:
            self._ids.add(message_id)
            if subject and date:
                self._composites.add(composite)
            if existing.draft_id:
                self._drafts_by_message[message_id] = existing.draft_id
        return existing

    def mark(self, message_id: str, subject: str = "", date: str = "") -> None:
        """Record the message as taken; call before any API side effect."""
        with self._lock:
            self._ids.add(message_id)
            if subject and date:
                self._composites.add((subject, date))

    def draft_for(self, message_id: str | None = None, recipient: str = "", subject: str = "") -> str | None:
        with self._lock:
            if message_id and message_id in self._drafts_by_message:
                return self._drafts_by_message[message_id]
            if recipient and subject:
                return self._drafts_by_reply.get((recipient.lower(), subject))
        return None

    def mark_draft(self, draft_id: str, message_id: str | None = None, recipient: str = "", subject: str = "") -> None:
        with self._lock:
            if message_id:
                self._drafts_by_message[message_id] = draft_id
            if recipient and subject:
                self._drafts_by_reply[(recipient.lower(), subject)] = draft_id

    def clear(self) -> None:
        with self._lock:
            self._ids.clear()
            self._composites.clear()
            self._drafts_by_message.clear()
            self._drafts_by_reply.clear()
