"""Tests for the background driver."""

import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from gmail_autodraft.driver import BackgroundDriver, DriverState
from gmail_autodraft.errors import AuthError, IntegrationPermissionError, NetworkError, PersistenceError
from gmail_autodraft.models import Integration, PipelineReport, TokenPair, utcnow


class FakeMailbox:
    def __init__(self) -> None:
        self.pipeline = MagicMock()
        self.pipeline.run.return_value = PipelineReport(fetched=1, processed=1)
        self.scheduler = MagicMock()
        self.scheduler.tick.return_value = 0


class FakeTimer:
    started: list = []

    def __init__(self, interval, function, kwargs=None):
        self.interval = interval
        self.function = function
        self.kwargs = kwargs or {}
        self.daemon = False
        self.cancelled = False

    def start(self):
        FakeTimer.started.append(self)

    def cancel(self):
        self.cancelled = True

    def fire(self):
        return self.function(**self.kwargs)


@pytest.fixture(autouse=True)
def _reset_timers():
    FakeTimer.started = []


@pytest.fixture
def mailbox():
    return FakeMailbox()


@pytest.fixture
def factory(mailbox):
    return MagicMock(return_value=mailbox)


@pytest.fixture
def connected(session_store, credential_store, integration_store, user_id):
    session_store.store(user_id, user_id)
    credential_store.save(TokenPair("access", "refresh"), ttl_seconds=3600)
    integration_store.save(user_id, "gmail", {"email": user_id})


@pytest.fixture
def driver(session_store, credential_store, integration_store, preference_store, signals, factory, connected):
    return BackgroundDriver(
        sessions=session_store,
        credentials=credential_store,
        integrations=integration_store,
        preferences=preference_store,
        signals=signals,
        mailbox_factory=factory,
        timer_factory=FakeTimer,
    )


def test_successful_run(driver, mailbox, session_store, user_id):
    before = session_store.load().last_active_at

    outcome = driver.run_once("foreground")

    assert outcome.ok
    assert outcome.user_id == user_id
    assert outcome.report.processed == 1
    mailbox.pipeline.run.assert_called_once()
    mailbox.scheduler.tick.assert_called_once()
    assert session_store.load().last_active_at >= before
    assert driver.state is DriverState.IDLE


def test_overlapping_runs_are_skipped(driver, mailbox):
    entered = threading.Event()
    release = threading.Event()

    def slow_run(*args, **kwargs):
        entered.set()
        release.wait(5)
        return PipelineReport()

    mailbox.pipeline.run.side_effect = slow_run
    first = threading.Thread(target=driver.run_once, args=("background",))
    first.start()
    assert entered.wait(5)

    assert driver.state is DriverState.RUNNING
    outcome = driver.run_once("foreground")
    assert not outcome.ran
    assert outcome.skipped_reason == "already running"

    release.set()
    first.join(5)
    assert driver.state is DriverState.IDLE
    assert mailbox.pipeline.run.call_count == 1


def test_skips_when_offline(driver, factory):
    driver.is_online = lambda: False

    outcome = driver.run_once()

    assert outcome.skipped_reason == "offline"
    factory.assert_not_called()


def test_skips_without_valid_session(driver, session_store, factory):
    session_store.clear()

    assert driver.run_once().skipped_reason == "no valid session"
    factory.assert_not_called()


def test_skips_without_integration(driver, integration_store, user_id, factory):
    integration_store.remove(user_id, "gmail")

    assert driver.run_once().skipped_reason == "mailbox not connected"
    factory.assert_not_called()


def test_auth_error_counts_and_signals(driver, mailbox, signals, user_id):
    events = []
    signals.on_auth_error(events.append)
    mailbox.pipeline.run.side_effect = AuthError("token revoked", user_id)

    outcome = driver.run_once()

    assert outcome.error == "token revoked"
    assert driver.auth_failures == 1
    assert [e.message for e in events] == ["token revoked"]


def test_already_signalled_auth_error_is_not_emitted_twice(driver, mailbox, signals, user_id):
    events = []
    signals.on_auth_error(events.append)
    mailbox.pipeline.run.side_effect = AuthError("revoked", user_id, signalled=True)

    driver.run_once()

    assert driver.auth_failures == 1
    assert events == []


def test_backs_off_after_three_auth_failures(driver, factory, user_id):
    factory.side_effect = AuthError("revoked", user_id, signalled=True)

    for _ in range(3):
        assert driver.run_once().error == "revoked"
    outcome = driver.run_once()

    assert outcome.skipped_reason == "backing off after auth failures"
    assert factory.call_count == 3


def test_reauth_success_resets_and_schedules_rerun(driver, factory, mailbox, signals, user_id):
    factory.side_effect = AuthError("revoked", user_id, signalled=True)
    for _ in range(3):
        driver.run_once()

    factory.side_effect = None
    factory.return_value = mailbox
    signals.emit_reauth_success(user_id)

    assert driver.auth_failures == 0
    (timer,) = FakeTimer.started
    assert timer.interval == 5
    outcome = timer.fire()
    assert outcome.ok
    assert outcome.trigger == "reauth"


def test_new_credentials_from_another_process_end_back_off(driver, factory, mailbox, credential_store, user_id):
    factory.side_effect = AuthError("revoked", user_id, signalled=True)
    for _ in range(3):
        driver.run_once()
    driver.last_auth_failure_at = utcnow() - timedelta(seconds=1)

    credential_store.save(TokenPair("new-access", "new-refresh"), ttl_seconds=3600)
    factory.side_effect = None
    factory.return_value = mailbox

    assert driver.run_once().ok
    assert driver.auth_failures == 0


def test_integration_permission_error_refreshes_once(driver, user_id):
    integrations = MagicMock()
    integrations.get.side_effect = [
        IntegrationPermissionError(),
        Integration(id=f"{user_id}-gmail", user_id=user_id, type="gmail"),
    ]
    driver.integrations = integrations

    assert driver.run_once().ok
    integrations.refresh.assert_called_once_with(user_id, "gmail")


def test_persistent_permission_error_counts_as_auth_failure(driver, signals):
    events = []
    signals.on_auth_error(events.append)
    integrations = MagicMock()
    integrations.get.side_effect = IntegrationPermissionError()
    driver.integrations = integrations

    outcome = driver.run_once()

    assert not outcome.ok
    assert driver.auth_failures == 1
    assert len(events) == 1


def test_auto_classify_disabled_still_ticks(driver, mailbox, set_preferences):
    set_preferences({"autoClassify": False})

    outcome = driver.run_once()

    assert outcome.ok
    assert outcome.report is None
    mailbox.pipeline.run.assert_not_called()
    mailbox.scheduler.tick.assert_called_once()


def test_tick_failure_does_not_fail_run(driver, mailbox):
    mailbox.scheduler.tick.side_effect = NetworkError("down", status=503)

    assert driver.run_once().ok


def test_pipeline_network_error_is_retried_next_tick(driver, mailbox):
    mailbox.pipeline.run.side_effect = NetworkError("down", status=503)

    outcome = driver.run_once()

    assert outcome.error == "down"
    assert driver.auth_failures == 0
    mailbox.scheduler.tick.assert_not_called()


def test_persist_failure_fails_run_without_auth_penalty(driver, mailbox, session_store):
    mailbox.pipeline.run.side_effect = PersistenceError("persist activity failed for message msg1: database is locked")
    before = session_store.load().last_active_at

    outcome = driver.run_once()

    assert not outcome.ok
    assert "database is locked" in outcome.error
    assert driver.auth_failures == 0
    assert session_store.load().last_active_at == before


def test_mailbox_is_cached_until_auth_failure(driver, factory, mailbox, user_id):
    driver.run_once()
    driver.run_once()
    assert factory.call_count == 1

    mailbox.pipeline.run.side_effect = AuthError("revoked", user_id, signalled=True)
    driver.run_once()
    mailbox.pipeline.run.side_effect = None
    driver.run_once()
    assert factory.call_count == 2


def test_success_resets_failure_counter(driver, mailbox, user_id):
    mailbox.pipeline.run.side_effect = [AuthError("revoked", user_id, signalled=True), PipelineReport()]

    driver.run_once()
    assert driver.auth_failures == 1
    driver.run_once()
    assert driver.auth_failures == 0


def test_start_and_stop(driver, mailbox):
    driver.initial_delay = 0
    driver.foreground_interval = 0.05
    driver.background_interval = 0.05

    driver.start()
    try:
        assert not driver.wait(0.3)
    finally:
        driver.stop(timeout=5)

    assert mailbox.pipeline.run.call_count >= 1
    assert driver.wait(0)
