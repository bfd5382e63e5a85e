"""Single-flight OAuth access-token refresh."""

from __future__ import annotations

import enum
import threading
from typing import Callable

import requests

from .constants import DEFAULT_TOKEN_TTL, TOKEN_ENDPOINT
from .credentials import CredentialStore
from .errors import AuthError, NetworkError, ValidationError
from .log import get_logger
from .models import TokenPair
from .signals import AuthSignals

logger = get_logger(__name__)

# OAuth error codes that mean the refresh token itself is dead.
_FATAL_GRANT_ERRORS = ("invalid_grant", "unauthorized_client")


class RefreshState(enum.Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"
    FAILED = "failed"


class TokenRefreshManager:
    """Turns an expired access token into a fresh one with the refresh token.

    At most one refresh is in flight per instance. A caller that waited on the
    lock while another thread refreshed gets that thread's token instead of
    starting a second refresh. Once the refresh token is rejected the manager
    is FAILED for good and every further call raises ``AuthError``.

    The manager never retries; the API client decides what to do with a
    ``NetworkError``.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        client_id: str | None,
        client_secret: str | None,
        signals: AuthSignals,
        token_uri: str = TOKEN_ENDPOINT,
        user_id: str | None = None,
        integrations=None,
        session: requests.Session | None = None,
        timeout: float = 30.0,
        on_token: Callable[[str], None] | None = None,
    ) -> None:
        self.store = store
        self.client_id = client_id
        self.client_secret = client_secret
        self.signals = signals
        self.token_uri = token_uri
        self.user_id = user_id
        self.integrations = integrations
        self.session = session or requests.Session()
        self.timeout = timeout
        self.on_token = on_token
        self.state = RefreshState.IDLE
        self._lock = threading.Lock()
        record = store.load()
        self._access_token: str | None = record.access_token if record else None

    @property
    def access_token(self) -> str | None:
        return self._access_token

    def ensure_fresh(self) -> str:
        """Return a usable access token, refreshing first if the stored one is expired."""
        record = self.store.load()
        if record is None:
            raise self.fail("No stored mailbox credentials")
        if record.is_expired():
            logger.info("Stored access token expired, refreshing", user_id=self.user_id)
            return self.refresh(stale_token=record.access_token)
        if record.access_token != self._access_token:
            self._set_token(record.access_token)
        return record.access_token

    def refresh(self, stale_token: str | None = None) -> str:
        """Refresh the access token and return the new one.

        ``stale_token`` is the token the caller saw rejected; if another
        thread already replaced it while we waited, that result is reused.
        """
        if self.state is RefreshState.FAILED:
            raise AuthError("Token refresh previously failed; reconnect the mailbox", self.user_id, signalled=True)

        with self._lock:
            if self.state is RefreshState.FAILED:
                raise AuthError(
                    "Token refresh previously failed; reconnect the mailbox", self.user_id, signalled=True
                )
            if stale_token is not None and self._access_token and self._access_token != stale_token:
                logger.debug("Reusing token refreshed by a concurrent caller", user_id=self.user_id)
                return self._access_token

            self.state = RefreshState.REFRESHING
            try:
                token = self._do_refresh()
            except NetworkError:
                self.state = RefreshState.IDLE
                raise
            except AuthError:
                self.state = RefreshState.FAILED
                raise
            except BaseException:
                self.state = RefreshState.IDLE
                raise
            self.state = RefreshState.IDLE
            return token

    def fail(self, message: str) -> AuthError:
        """Clear stored credentials, emit auth-error and enter FAILED.

        Returns the ``AuthError`` for the caller to raise.
        """
        self.store.clear()
        self._access_token = None
        self.state = RefreshState.FAILED
        self.signals.emit_auth_error(self.user_id, message)
        return AuthError(message, self.user_id, signalled=True)

    def _do_refresh(self) -> str:
        record = self.store.load()
        if record is None or not record.renewable:
            raise self.fail("No refresh token available; reconnect the mailbox")
        if not self.client_id or not self.client_secret:
            raise ValidationError("OAuth client id and secret must be configured to refresh tokens")

        logger.info("Refreshing access token", user_id=self.user_id)
        try:
            resp = self.session.post(
                self.token_uri,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": record.refresh_token,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise NetworkError(f"Token endpoint unreachable: {exc}") from exc

        if resp.status_code >= 500:
            raise NetworkError("Token endpoint error", status=resp.status_code, body=resp.text)

        try:
            payload = resp.json()
        except ValueError:
            payload = {}

        if resp.status_code >= 400 or "access_token" not in payload:
            error = payload.get("error", "") if isinstance(payload, dict) else ""
            if error in _FATAL_GRANT_ERRORS:
                raise self.fail(f"Refresh token rejected ({error}); reconnect the mailbox")
            raise NetworkError(
                f"Token refresh failed: {error or 'unexpected response'}",
                status=resp.status_code,
                body=resp.text,
            )

        tokens = TokenPair(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or record.refresh_token,
        )
        self.store.save(tokens, int(payload.get("expires_in") or DEFAULT_TOKEN_TTL))
        self._set_token(tokens.access_token)
        self._update_integration(tokens)
        logger.info("Access token refreshed", user_id=self.user_id)
        return tokens.access_token

    def _set_token(self, token: str) -> None:
        self._access_token = token
        if self.on_token is not None:
            self.on_token(token)

    def _update_integration(self, tokens: TokenPair) -> None:
        if self.integrations is None or not self.user_id:
            return
        try:
            self.integrations.update_tokens(self.user_id, tokens.access_token, tokens.refresh_token)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not update integration tokens", user_id=self.user_id, error=str(exc))
