"""Ingestion orchestration: fetch unread, classify, label, persist, draft, schedule."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from .categories import Category
from .dedup import IdempotencyTracker
from .drafts import build_reply, draft_url, reply_subject, thread_references
from .errors import AuthError, PersistenceError
from .gmail_client import parse_from_header
from .labels import LabelCache
from .log import get_logger
from .models import ActivityRecord, ActivityStatus, MessageEnvelope, PipelineReport, UserPreferences, utcnow
from .services import ClassificationClient, DraftGenerator

logger = get_logger(__name__)


@dataclass
class StageResult:
    ok: bool
    value: Any = None
    error: Exception | None = None


class IngestionPipeline:
    """One polling cycle over a connected mailbox.

    Per-message failures are logged and the batch moves on; failing to list
    the unread messages, failing to persist an activity, and ``AuthError``
    from any stage abort the run.
    """

    def __init__(
        self,
        client,
        labels: LabelCache,
        tracker: IdempotencyTracker,
        activities,
        classifier: ClassificationClient,
        drafter: DraftGenerator,
        scheduler=None,
    ) -> None:
        self.client = client
        self.labels = labels
        self.tracker = tracker
        self.activities = activities
        self.classifier = classifier
        self.drafter = drafter
        self.scheduler = scheduler

    def run(self, user_id: str, prefs: UserPreferences, mailbox_email: str | None = None) -> PipelineReport:
        report = PipelineReport()
        self.labels.ensure_loaded()

        ids = self.client.list_unread_ids()
        report.fetched = len(ids)
        fresh = [i for i in ids if not self.tracker.seen(i)]
        report.skipped += len(ids) - len(fresh)
        if not fresh:
            logger.info("No new unread messages", user_id=user_id, unread=len(ids))
            return report

        envelopes = self.client.fetch_messages(fresh)
        report.failed += len(fresh) - len(envelopes)

        for envelope in envelopes:
            try:
                self._process(user_id, envelope, prefs, mailbox_email, report)
            except (AuthError, PersistenceError):
                raise
            except Exception:
                logger.exception("Message processing failed", message_id=envelope.id)
                report.failed += 1

        logger.info(
            "Ingestion cycle finished",
            user_id=user_id,
            fetched=report.fetched,
            processed=report.processed,
            skipped=report.skipped,
            drafted=report.drafted,
            scheduled=report.scheduled,
            failed=report.failed,
        )
        return report

    def _run_stage(self, name: str, fn: Callable[[], Any], message_id: str, critical: bool = False) -> StageResult:
        try:
            return StageResult(ok=True, value=fn())
        except AuthError:
            raise
        except Exception as exc:
            if critical:
                raise PersistenceError(f"{name} failed for message {message_id}: {exc}") from exc
            logger.warning("Stage failed, continuing", stage=name, message_id=message_id, error=str(exc))
            return StageResult(ok=False, error=exc)

    def _process(
        self,
        user_id: str,
        envelope: MessageEnvelope,
        prefs: UserPreferences,
        mailbox_email: str | None,
        report: PipelineReport,
    ) -> None:
        if self.tracker.check(user_id, envelope.id, envelope.subject, envelope.internal_date):
            report.skipped += 1
            return
        self.tracker.mark(envelope.id, envelope.subject, envelope.internal_date)

        category = self.classifier.classify(envelope.subject, envelope.snippet)
        label = self._run_stage("resolve label", lambda: self.labels.get_or_create(category), envelope.id)
        if label.ok:
            self._run_stage(
                "apply label", lambda: self.client.modify_labels(envelope.id, add=[label.value]), envelope.id
            )
            self._run_stage("mark read", lambda: self.client.mark_read(envelope.id), envelope.id)

        record = self.activities.new_record(
            user_id,
            subject=envelope.subject,
            sender=envelope.sender,
            category=category,
            body=envelope.snippet,
            message_id=envelope.id,
            thread_id=envelope.thread_id,
        )
        stored = self._run_stage("persist activity", lambda: self.activities.create(record), envelope.id, critical=True)
        record, created = stored.value
        report.processed += 1

        if not label.ok:
            logger.info("No label for message, draft skipped", message_id=envelope.id)
            return
        if not created or category is Category.SPAM or not prefs.auto_draft:
            return

        drafted = self._run_stage(
            "create draft", lambda: self._create_draft(record, envelope, prefs, mailbox_email), envelope.id
        )
        if not drafted.ok:
            report.failed += 1
            return
        if drafted.value is None:
            return
        report.drafted += 1

        if prefs.auto_send_drafts and self.scheduler is not None:
            scheduled = self._run_stage(
                "schedule send", lambda: self.scheduler.schedule(drafted.value.draft_id, record.id), envelope.id
            )
            if scheduled.ok and scheduled.value is not None:
                report.scheduled += 1

    def _create_draft(
        self,
        record: ActivityRecord,
        envelope: MessageEnvelope,
        prefs: UserPreferences,
        mailbox_email: str | None,
    ) -> ActivityRecord | None:
        _, recipient = parse_from_header(envelope.sender)
        subject = reply_subject(envelope.subject)
        existing = self.tracker.draft_for(envelope.id, recipient, subject)
        if existing:
            logger.info("Draft already created for message", message_id=envelope.id, draft_id=existing)
            return None

        content = self.drafter.generate(
            subject=envelope.subject,
            body=envelope.snippet,
            category=record.category,
            sender=envelope.sender,
            signature=prefs.signature,
            language=prefs.language,
            email_address=mailbox_email,
            shop_domain=prefs.shop_domain,
            shop_access_token=prefs.shop_access_token,
        )
        thread = self._run_stage("load thread", lambda: self.client.get_thread(envelope.thread_id), envelope.id)
        references = thread_references(thread.value) if thread.ok else []
        raw = build_reply(envelope, content, references, prefs.from_email or mailbox_email)

        draft = self.client.create_draft(raw, envelope.thread_id)
        self.tracker.mark_draft(draft.draft_id, envelope.id, recipient, subject)
        updated = self.activities.update(
            record.id,
            status=ActivityStatus.DRAFT_CREATED,
            draft_id=draft.draft_id,
            draft_url=draft_url(draft),
            draft_created_at=utcnow(),
        )
        logger.info("Draft created", message_id=envelope.id, draft_id=draft.draft_id, activity_id=record.id)
        return updated
