"""Shared fixtures for tests."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from gmail_autodraft.autosend import AutoSendScheduler
from gmail_autodraft.categories import Category
from gmail_autodraft.credentials import CredentialStore, SessionStore
from gmail_autodraft.dedup import IdempotencyTracker
from gmail_autodraft.errors import ApiError
from gmail_autodraft.labels import LabelCache
from gmail_autodraft.models import CreatedDraft, MessageEnvelope, SentMessage
from gmail_autodraft.pipeline import IngestionPipeline
from gmail_autodraft.preferences import PreferenceStore
from gmail_autodraft.signals import AuthSignals
from gmail_autodraft.storage import ActivityStore, IntegrationStore

USER_ID = "merchant@example.com"


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMailboxClient:
    """In-memory stand-in for GmailClient."""

    def __init__(self, messages: list[MessageEnvelope] | None = None, labels: list[dict] | None = None) -> None:
        self.messages = {m.id: m for m in messages or []}
        self.unread = [m.id for m in messages or []]
        self.labels = list(labels or [])
        self.threads: dict[str, dict] = {}
        self.drafts: list[dict] = []
        self.created_drafts: list[tuple[str, str | None]] = []
        self.created_labels: list[tuple[str, tuple | None]] = []
        self.modified: list[tuple[str, list, list]] = []
        self.read: list[str] = []
        self.sent: list[str] = []
        self.fetch_calls: list[list[str]] = []
        self.label_list_calls = 0
        self.list_error: Exception | None = None
        self.label_list_error: Exception | None = None
        self.create_label_errors: list[Exception] = []
        self.modify_error: Exception | None = None
        self.send_errors: list[Exception] = []

    def list_unread_ids(self, max_results=None):
        if self.list_error is not None:
            raise self.list_error
        return list(self.unread)

    def fetch_messages(self, message_ids):
        self.fetch_calls.append(list(message_ids))
        return [self.messages[i] for i in message_ids if i in self.messages]

    def list_labels(self):
        self.label_list_calls += 1
        if self.label_list_error is not None:
            raise self.label_list_error
        return list(self.labels)

    def create_label(self, name, color=None):
        self.created_labels.append((name, color))
        if self.create_label_errors:
            raise self.create_label_errors.pop(0)
        label = {"id": f"Label_{len(self.labels) + 1}", "name": name}
        self.labels.append(label)
        return label

    def modify_labels(self, message_id, add=None, remove=None):
        if self.modify_error is not None:
            raise self.modify_error
        self.modified.append((message_id, add or [], remove or []))

    def mark_read(self, message_id):
        self.read.append(message_id)

    def get_thread(self, thread_id):
        return self.threads.get(thread_id, {"id": thread_id, "messages": []})

    def create_draft(self, raw, thread_id=None):
        n = len(self.drafts) + 1
        draft = CreatedDraft(draft_id=f"r-draft{n}", message_id=f"msg-draft{n}")
        self.drafts.append({"id": draft.draft_id, "message": {"id": draft.message_id}})
        self.created_drafts.append((raw, thread_id))
        return draft

    def list_drafts(self):
        return list(self.drafts)

    def send_draft(self, draft_id):
        if self.send_errors:
            raise self.send_errors.pop(0)
        if not any(d["id"] == draft_id for d in self.drafts):
            raise ApiError("Requested entity was not found.", status=404)
        self.sent.append(draft_id)
        return SentMessage(id=f"sent-{draft_id}", thread_id="thread")


class FakeClassifier:
    def __init__(self, category: Category = Category.DELIVERY) -> None:
        self.category = category
        self.calls: list[tuple[str, str]] = []

    def classify(self, subject, body):
        self.calls.append((subject, body))
        return self.category


class FakeDrafter:
    def __init__(self, reply: str = "<p>Votre colis arrive demain.</p>") -> None:
        self.reply = reply
        self.calls: list[dict] = []

    def generate(self, **kwargs):
        self.calls.append(kwargs)
        return self.reply


def make_envelope(n: int = 1, **overrides) -> MessageEnvelope:
    fields = {
        "id": f"msg{n}",
        "thread_id": f"thread{n}",
        "subject": f"Où est ma commande #{1000 + n} ?",
        "sender": "Marie Dupont <marie@example.com>",
        "snippet": "Bonjour, je n'ai pas reçu ma commande.",
        "internal_date": str(1718000000000 + n * 1000),
        "labels": ["INBOX", "UNREAD"],
        "rfc_message_id": f"<CAF{n}@mail.example.com>",
    }
    fields.update(overrides)
    return MessageEnvelope(**fields)


@pytest.fixture
def user_id() -> str:
    return USER_ID


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 6, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def signals() -> AuthSignals:
    return AuthSignals()


@pytest.fixture
def activity_store(tmp_path):
    with ActivityStore(tmp_path / "autodraft.db") as store:
        yield store


@pytest.fixture
def integration_store(tmp_path):
    with IntegrationStore(tmp_path / "autodraft.db") as store:
        yield store


@pytest.fixture
def credential_store(tmp_path) -> CredentialStore:
    return CredentialStore(tmp_path / "token.json")


@pytest.fixture
def session_store(tmp_path) -> SessionStore:
    return SessionStore(tmp_path / "session.json")


@pytest.fixture
def preferences_path(tmp_path):
    return tmp_path / "preferences.json"


@pytest.fixture
def preference_store(preferences_path) -> PreferenceStore:
    return PreferenceStore(preferences_path)


@pytest.fixture
def set_preferences(preferences_path):
    def _set(data: dict, user: str = USER_ID) -> None:
        existing = json.loads(preferences_path.read_text()) if preferences_path.exists() else {}
        existing[user] = data
        preferences_path.write_text(json.dumps(existing))

    return _set


@pytest.fixture
def fake_client() -> FakeMailboxClient:
    return FakeMailboxClient([make_envelope(1)])


@pytest.fixture
def classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture
def drafter() -> FakeDrafter:
    return FakeDrafter()


@pytest.fixture
def tracker(activity_store) -> IdempotencyTracker:
    return IdempotencyTracker(activity_store)


@pytest.fixture
def scheduler(fake_client, activity_store, preference_store, clock) -> AutoSendScheduler:
    return AutoSendScheduler(fake_client, activity_store, preference_store, USER_ID, clock=clock)


@pytest.fixture
def pipeline(fake_client, tracker, activity_store, classifier, drafter, scheduler) -> IngestionPipeline:
    return IngestionPipeline(
        fake_client,
        LabelCache(fake_client),
        tracker,
        activity_store,
        classifier,
        drafter,
        scheduler,
    )
