"""Timer-driven background processing with overlap guard and auth back-off."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from .constants import BACKGROUND_INTERVAL, FOREGROUND_INTERVAL, INITIAL_DELAY, MAX_AUTH_FAILURES, REAUTH_RERUN_DELAY
from .errors import AuthError, IntegrationPermissionError, MailboxError
from .log import get_logger
from .models import Integration, PipelineReport, SessionRecord, utcnow
from .signals import AuthSignals

logger = get_logger(__name__)


class DriverState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class RunOutcome:
    trigger: str
    ran: bool
    skipped_reason: str | None = None
    user_id: str | None = None
    report: PipelineReport | None = None
    sent: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.ran and self.error is None


class BackgroundDriver:
    """Runs ingestion and the auto-send tick for the active session.

    A foreground timer and a background timer both call ``run_once``; a
    non-blocking lock makes sure only one run is ever active, whichever
    timer (or a manual trigger) fired. After ``max_auth_failures``
    consecutive auth failures runs are skipped until a re-auth succeeds.
    """

    def __init__(
        self,
        *,
        sessions,
        credentials,
        integrations,
        preferences,
        signals: AuthSignals,
        mailbox_factory: Callable[[SessionRecord], object],
        is_online: Callable[[], bool] = lambda: True,
        max_auth_failures: int = MAX_AUTH_FAILURES,
        foreground_interval: float = FOREGROUND_INTERVAL,
        background_interval: float = BACKGROUND_INTERVAL,
        initial_delay: float = INITIAL_DELAY,
        reauth_rerun_delay: float = REAUTH_RERUN_DELAY,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        self.sessions = sessions
        self.credentials = credentials
        self.integrations = integrations
        self.preferences = preferences
        self.signals = signals
        self.mailbox_factory = mailbox_factory
        self.is_online = is_online
        self.max_auth_failures = max_auth_failures
        self.foreground_interval = foreground_interval
        self.background_interval = background_interval
        self.initial_delay = initial_delay
        self.reauth_rerun_delay = reauth_rerun_delay
        self.timer_factory = timer_factory

        self.auth_failures = 0
        self.last_auth_failure_at: datetime | None = None
        self._running = threading.Lock()
        self._mailboxes: dict[str, object] = {}
        self._mailbox_lock = threading.Lock()
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._rerun: threading.Timer | None = None

        signals.on_reauth_success(self._on_reauth_success)

    @property
    def state(self) -> DriverState:
        return DriverState.RUNNING if self._running.locked() else DriverState.IDLE

    # --- single run ---

    def run_once(self, trigger: str = "background") -> RunOutcome:
        if not self._running.acquire(blocking=False):
            logger.debug("Run already in progress, skipping", trigger=trigger)
            return RunOutcome(trigger, ran=False, skipped_reason="already running")
        try:
            return self._run(trigger)
        finally:
            self._running.release()

    def _run(self, trigger: str) -> RunOutcome:
        if not self.is_online():
            return RunOutcome(trigger, ran=False, skipped_reason="offline")

        session = self.sessions.load_valid()
        if session is None:
            return RunOutcome(trigger, ran=False, skipped_reason="no valid session")
        user_id = session.subject_id

        if self.auth_failures >= self.max_auth_failures:
            if self._reauthenticated_elsewhere():
                logger.info("New credentials found, resuming", user_id=user_id)
                self._reset_auth_failures()
            else:
                return RunOutcome(trigger, ran=False, skipped_reason="backing off after auth failures", user_id=user_id)

        outcome = RunOutcome(trigger, ran=True, user_id=user_id)
        try:
            if self._resolve_integration(user_id) is None:
                return RunOutcome(trigger, ran=False, skipped_reason="mailbox not connected", user_id=user_id)

            mailbox = self._mailbox(session)
            prefs = self.preferences.get(user_id)
            if prefs.auto_classify:
                outcome.report = mailbox.pipeline.run(user_id, prefs, session.subject_contact)
            else:
                logger.info("Auto-classify disabled, ingestion skipped", user_id=user_id)

            try:
                outcome.sent = mailbox.scheduler.tick()
            except AuthError:
                raise
            except MailboxError as exc:
                logger.warning("Auto-send tick failed", user_id=user_id, error=str(exc))
        except (AuthError, IntegrationPermissionError) as exc:
            self._record_auth_failure(user_id, exc)
            outcome.error = str(exc)
            return outcome
        except MailboxError as exc:
            logger.warning("Run failed, retrying next tick", trigger=trigger, user_id=user_id, error=str(exc))
            outcome.error = str(exc)
            return outcome

        self._reset_auth_failures()
        self.sessions.touch()
        logger.info("Run finished", trigger=trigger, user_id=user_id, sent=outcome.sent)
        return outcome

    def _resolve_integration(self, user_id: str) -> Integration | None:
        try:
            return self.integrations.get(user_id, "gmail")
        except IntegrationPermissionError:
            logger.warning("Integration unreadable, refreshing once", user_id=user_id)
            self.integrations.refresh(user_id, "gmail")
            return self.integrations.get(user_id, "gmail")

    def _mailbox(self, session: SessionRecord):
        with self._mailbox_lock:
            mailbox = self._mailboxes.get(session.subject_id)
        if mailbox is None:
            mailbox = self.mailbox_factory(session)
            with self._mailbox_lock:
                self._mailboxes[session.subject_id] = mailbox
        return mailbox

    def _drop_mailboxes(self) -> None:
        with self._mailbox_lock:
            self._mailboxes.clear()

    # --- auth back-off ---

    def _record_auth_failure(self, user_id: str, exc: Exception) -> None:
        self.auth_failures += 1
        self.last_auth_failure_at = utcnow()
        self._drop_mailboxes()
        logger.warning(
            "Authentication failure",
            user_id=user_id,
            failures=self.auth_failures,
            threshold=self.max_auth_failures,
        )
        if not getattr(exc, "signalled", False):
            self.signals.emit_auth_error(user_id, str(exc))

    def _reset_auth_failures(self) -> None:
        self.auth_failures = 0
        self.last_auth_failure_at = None

    def _reauthenticated_elsewhere(self) -> bool:
        record = self.credentials.load()
        if record is None or record.obtained_at is None or self.last_auth_failure_at is None:
            return False
        return record.obtained_at > self.last_auth_failure_at

    def _on_reauth_success(self, user_id: str | None) -> None:
        self._reset_auth_failures()
        self._drop_mailboxes()
        if self._rerun is not None:
            self._rerun.cancel()
        self._rerun = self.timer_factory(self.reauth_rerun_delay, self.run_once, kwargs={"trigger": "reauth"})
        self._rerun.daemon = True
        self._rerun.start()

    # --- timers ---

    def start(self) -> None:
        """Start the foreground and background timer threads."""
        self._stop.clear()
        for trigger, interval in (("foreground", self.foreground_interval), ("background", self.background_interval)):
            thread = threading.Thread(
                target=self._loop, args=(trigger, interval), name=f"autodraft-{trigger}", daemon=True
            )
            thread.start()
            self._threads.append(thread)
        logger.info(
            "Background driver started",
            foreground_interval=self.foreground_interval,
            background_interval=self.background_interval,
        )

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._rerun is not None:
            self._rerun.cancel()
        for thread in self._threads:
            thread.join(timeout)
        self._threads.clear()
        logger.info("Background driver stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until ``stop`` is called; returns True once stopped."""
        return self._stop.wait(timeout)

    def _loop(self, trigger: str, interval: float) -> None:
        if self._stop.wait(self.initial_delay):
            return
        while True:
            try:
                self.run_once(trigger)
            except Exception:
                logger.exception("Unexpected error in background run", trigger=trigger)
            if self._stop.wait(interval):
                return
