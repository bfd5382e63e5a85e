"""Delayed sending of generated drafts."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from .drafts import DraftRef
from .errors import ApiError, AuthError, MailboxError, ValidationError
from .log import get_logger
from .models import ActivityStatus, SentMessage, UserPreferences, parse_timestamp, utcnow

logger = get_logger(__name__)


class AutoSendScheduler:
    """Schedules drafts for sending and sends the due ones on each tick.

    The due time lives on the activity record, so a restart loses nothing:
    the next tick picks up whatever is ``draft_created`` and past due.
    """

    def __init__(
        self,
        client,
        activities,
        preferences,
        user_id: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.client = client
        self.activities = activities
        self.preferences = preferences
        self.user_id = user_id
        self.clock = clock

    def get_preferences(self, user_id: str | None = None) -> UserPreferences:
        try:
            return self.preferences.get(user_id or self.user_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Preferences unreadable, auto-send defaults apply", error=str(exc))
            return UserPreferences()

    def schedule(self, draft_id: str, activity_id: str) -> datetime | None:
        """Persist the send time for a draft; returns None when auto-send is off.

        With no delay the draft is sent right away. A failed immediate send
        stays scheduled and is retried by the next tick.
        """
        prefs = self.get_preferences()
        if not prefs.auto_send_drafts:
            logger.debug("Auto-send disabled, draft not scheduled", draft_id=draft_id)
            return None

        scheduled_at = self.clock() + timedelta(minutes=prefs.auto_send_delay)
        self.activities.update(activity_id, scheduled_send_time=scheduled_at)
        logger.info("Draft scheduled", draft_id=draft_id, activity_id=activity_id, send_at=scheduled_at.isoformat())

        if prefs.auto_send_delay == 0:
            try:
                self._send_and_record(activity_id, draft_id)
            except AuthError:
                raise
            except MailboxError as exc:
                logger.warning("Immediate send failed, left for next tick", draft_id=draft_id, error=str(exc))
        return scheduled_at

    def tick(self) -> int:
        """Send every due draft; returns how many were sent."""
        if not self.get_preferences().auto_send_drafts:
            return 0

        now = self.clock()
        sent = 0
        for record in self.activities.list_by_status(self.user_id, ActivityStatus.DRAFT_CREATED):
            if not record.draft_id:
                logger.error("Activity in draft_created state without draft id", activity_id=record.id)
                continue
            due_at = parse_timestamp(record.scheduled_send_time)
            if due_at is None or due_at > now:
                continue
            try:
                self._send_and_record(record.id, record.draft_id)
                sent += 1
            except AuthError:
                raise
            except MailboxError as exc:
                logger.warning("Scheduled send failed", activity_id=record.id, draft_id=record.draft_id, error=str(exc))

        if sent:
            logger.info("Auto-send tick finished", user_id=self.user_id, sent=sent)
        return sent

    def send(self, draft: str) -> SentMessage:
        """Send a draft given its API id or a Gmail web UI draft URL."""
        ref = DraftRef.parse(draft)
        if ref.kind == "ui":
            return self.client.send_draft(self._resolve(ref.id))
        try:
            return self.client.send_draft(ref.id)
        except ApiError as exc:
            if exc.status != 404:
                raise
            logger.info("Draft id not found, resolving through draft list", draft_id=ref.id)
            resolved = self._resolve(ref.id)
            if resolved == ref.id:
                raise
            return self.client.send_draft(resolved)

    def _send_and_record(self, activity_id: str, draft_id: str) -> None:
        message = self.send(draft_id)
        self.activities.update(
            activity_id,
            status=ActivityStatus.DRAFT_SENT,
            sent_at=self.clock(),
            message_id_after_send=message.id,
        )
        logger.info("Draft sent", activity_id=activity_id, draft_id=draft_id, message_id=message.id)

    def _resolve(self, some_id: str) -> str:
        """Find the API draft id for an API id, a message id, or an id that contains or is contained in one."""
        drafts = self.client.list_drafts()
        for d in drafts:
            if d.get("id") == some_id or (d.get("message") or {}).get("id") == some_id:
                return d["id"]
        for d in drafts:
            candidates = [c for c in (d.get("id"), (d.get("message") or {}).get("id")) if c]
            if any(some_id in c or c in some_id for c in candidates):
                return d["id"]
        raise ValidationError(f"No draft matches {some_id!r}")
