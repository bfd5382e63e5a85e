"""Tests for the token refresh manager."""

import threading
import time
from unittest.mock import MagicMock

import pytest
import requests

from gmail_autodraft.errors import AuthError, NetworkError, ValidationError
from gmail_autodraft.models import TokenPair
from gmail_autodraft.tokens import RefreshState, TokenRefreshManager


def _response(status=200, payload=None):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload if payload is not None else {}
    resp.text = str(payload)
    return resp


def _manager(credential_store, signals, session, **kwargs):
    return TokenRefreshManager(
        credential_store,
        client_id="client-id",
        client_secret="client-secret",
        signals=signals,
        user_id="merchant@example.com",
        session=session,
        **kwargs,
    )


def test_refresh_success_updates_store(credential_store, signals):
    credential_store.save(TokenPair("old-access", "refresh-1"), ttl_seconds=3600)
    session = MagicMock()
    session.post.return_value = _response(200, {"access_token": "new-access", "expires_in": 3599})
    applied = []
    manager = _manager(credential_store, signals, session, on_token=applied.append)

    token = manager.refresh(stale_token="old-access")

    assert token == "new-access"
    assert manager.access_token == "new-access"
    assert manager.state is RefreshState.IDLE
    assert applied == ["new-access"]
    stored = credential_store.load()
    assert stored.access_token == "new-access"
    assert stored.refresh_token == "refresh-1"  # kept when the grant omits it
    data = session.post.call_args.kwargs["data"]
    assert data["grant_type"] == "refresh_token"
    assert data["refresh_token"] == "refresh-1"


def test_refresh_updates_integration(credential_store, signals, integration_store):
    credential_store.save(TokenPair("old", "refresh-1"), ttl_seconds=3600)
    integration_store.save("merchant@example.com", "gmail", {"email": "merchant@example.com"})
    session = MagicMock()
    session.post.return_value = _response(200, {"access_token": "new", "refresh_token": "refresh-2"})
    manager = _manager(credential_store, signals, session, integrations=integration_store)

    manager.refresh()

    config = integration_store.get("merchant@example.com").config
    assert config["accessToken"] == "new"
    assert config["refreshToken"] == "refresh-2"
    assert credential_store.load().refresh_token == "refresh-2"


@pytest.mark.parametrize("error", ["invalid_grant", "unauthorized_client"])
def test_revoked_refresh_token(credential_store, signals, error):
    credential_store.save(TokenPair("old", "refresh-1"), ttl_seconds=3600)
    events = []
    signals.on_auth_error(events.append)
    session = MagicMock()
    session.post.return_value = _response(400, {"error": error})
    manager = _manager(credential_store, signals, session)

    with pytest.raises(AuthError) as exc_info:
        manager.refresh()

    assert exc_info.value.signalled
    assert manager.state is RefreshState.FAILED
    assert credential_store.load() is None
    assert len(events) == 1
    assert events[0].user_id == "merchant@example.com"

    # Terminal: no further refresh attempts
    with pytest.raises(AuthError):
        manager.refresh()
    assert session.post.call_count == 1
    assert len(events) == 1


@pytest.mark.parametrize(
    "side_effect",
    [requests.ConnectionError("down"), requests.Timeout("slow")],
)
def test_network_failure_keeps_credentials(credential_store, signals, side_effect):
    credential_store.save(TokenPair("old", "refresh-1"), ttl_seconds=3600)
    session = MagicMock()
    session.post.side_effect = side_effect
    manager = _manager(credential_store, signals, session)

    with pytest.raises(NetworkError):
        manager.refresh()

    assert manager.state is RefreshState.IDLE
    assert credential_store.load().access_token == "old"


def test_server_error_is_network_error(credential_store, signals):
    credential_store.save(TokenPair("old", "refresh-1"), ttl_seconds=3600)
    session = MagicMock()
    session.post.return_value = _response(503, {})
    manager = _manager(credential_store, signals, session)

    with pytest.raises(NetworkError) as exc_info:
        manager.refresh()
    assert exc_info.value.status == 503
    assert credential_store.has_credentials()


def test_missing_refresh_token_fails(credential_store, signals):
    credential_store.save(TokenPair("old", None), ttl_seconds=3600)
    events = []
    signals.on_auth_error(events.append)
    session = MagicMock()
    manager = _manager(credential_store, signals, session)

    with pytest.raises(AuthError):
        manager.refresh()
    session.post.assert_not_called()
    assert len(events) == 1


def test_missing_client_config(credential_store, signals):
    credential_store.save(TokenPair("old", "refresh-1"), ttl_seconds=3600)
    manager = TokenRefreshManager(credential_store, client_id=None, client_secret=None, signals=signals)

    with pytest.raises(ValidationError):
        manager.refresh()
    assert manager.state is RefreshState.IDLE


def test_ensure_fresh_skips_valid_token(credential_store, signals):
    credential_store.save(TokenPair("valid", "refresh-1"), ttl_seconds=3600)
    session = MagicMock()
    manager = _manager(credential_store, signals, session)

    assert manager.ensure_fresh() == "valid"
    session.post.assert_not_called()


def test_ensure_fresh_refreshes_expired_token(credential_store, signals):
    credential_store.save(TokenPair("expired", "refresh-1"), ttl_seconds=0)
    session = MagicMock()
    session.post.return_value = _response(200, {"access_token": "fresh", "expires_in": 3600})
    manager = _manager(credential_store, signals, session)

    assert manager.ensure_fresh() == "fresh"
    assert session.post.call_count == 1


def test_concurrent_callers_share_one_refresh(credential_store, signals):
    """Threads that saw the same stale token wait for a single refresh."""
    credential_store.save(TokenPair("stale", "refresh-1"), ttl_seconds=3600)
    session = MagicMock()

    def slow_post(*args, **kwargs):
        time.sleep(0.2)
        return _response(200, {"access_token": "fresh", "expires_in": 3600})

    session.post.side_effect = slow_post
    manager = _manager(credential_store, signals, session)

    results = []
    threads = [threading.Thread(target=lambda: results.append(manager.refresh("stale"))) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results == ["fresh"] * 5
    assert session.post.call_count == 1
