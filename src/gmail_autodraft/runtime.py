"""Wires stores, services and one mailbox stack per session from Settings."""

from __future__ import annotations

from dataclasses import dataclass

from .auth import build_credentials, build_gmail_service, load_client_config
from .autosend import AutoSendScheduler
from .config import Settings
from .connectivity import ConnectivityMonitor
from .credentials import CredentialStore, SessionStore
from .dedup import IdempotencyTracker
from .errors import AuthError
from .gmail_client import GmailClient
from .labels import LabelCache
from .models import SessionRecord
from .pipeline import IngestionPipeline
from .preferences import PreferenceStore
from .services import ClassificationClient, DraftGenerator
from .signals import AuthSignals
from .storage import ActivityStore, IntegrationStore
from .tokens import TokenRefreshManager


@dataclass
class Mailbox:
    """Everything needed to process one connected mailbox."""

    user_id: str
    email: str
    tokens: TokenRefreshManager
    client: GmailClient
    labels: LabelCache
    scheduler: AutoSendScheduler
    pipeline: IngestionPipeline


class Runtime:
    def __init__(self, settings: Settings, signals: AuthSignals | None = None) -> None:
        self.settings = settings
        self.signals = signals or AuthSignals()
        self.credentials = CredentialStore(settings.token_path)
        self.sessions = SessionStore(settings.session_path)
        self.activities = ActivityStore(settings.database_path)
        self.integrations = IntegrationStore(settings.database_path)
        self.preferences = PreferenceStore(settings.preferences_path, settings.language)
        self.tracker = IdempotencyTracker(self.activities)
        self.classifier = ClassificationClient(settings.classify_webhook_url, settings.webhook_timeout)
        self.drafter = DraftGenerator(settings.draft_webhook_url, settings.webhook_timeout)
        self.connectivity = ConnectivityMonitor(settings.connectivity_host, ttl=settings.connectivity_ttl)

    def is_online(self) -> bool:
        return self.connectivity()

    def build_mailbox(self, session: SessionRecord) -> Mailbox:
        """Build the client stack for the session's mailbox, refreshing an expired token first."""
        record = self.credentials.load()
        if record is None:
            raise AuthError("Mailbox is not connected; run 'gmail-autodraft connect'", session.subject_id)

        client_id, client_secret, token_uri = load_client_config(self.settings)
        credentials = build_credentials(record.access_token)

        def _apply_token(token: str) -> None:
            credentials.token = token

        tokens = TokenRefreshManager(
            self.credentials,
            client_id=client_id,
            client_secret=client_secret,
            token_uri=token_uri,
            signals=self.signals,
            user_id=session.subject_id,
            integrations=self.integrations,
            timeout=self.settings.webhook_timeout,
            on_token=_apply_token,
        )
        tokens.ensure_fresh()

        client = GmailClient(
            build_gmail_service(credentials),
            tokens,
            is_online=self.is_online,
            attempts=self.settings.retry_attempts,
            base_delay=self.settings.retry_base_delay,
            factor=self.settings.retry_factor,
            page_size=self.settings.page_size,
        )
        prefs = self.preferences.get(session.subject_id)
        labels = LabelCache(client, prefs.language)
        scheduler = AutoSendScheduler(client, self.activities, self.preferences, session.subject_id)
        pipeline = IngestionPipeline(
            client, labels, self.tracker, self.activities, self.classifier, self.drafter, scheduler
        )
        return Mailbox(
            user_id=session.subject_id,
            email=session.subject_contact,
            tokens=tokens,
            client=client,
            labels=labels,
            scheduler=scheduler,
            pipeline=pipeline,
        )

    def close(self) -> None:
        self.activities.close()
        self.integrations.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.close()
