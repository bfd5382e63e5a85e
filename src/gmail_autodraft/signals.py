"""Explicit channel for auth-error and re-auth-success notifications."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from .log import get_logger
from .models import utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthErrorEvent:
    user_id: str | None
    message: str
    timestamp: datetime = field(default_factory=utcnow)


AuthErrorHandler = Callable[[AuthErrorEvent], None]
ReauthHandler = Callable[[str | None], None]


class AuthSignals:
    """Observers subscribe here instead of listening on a global event bus.

    The token manager and the driver emit ``auth_error`` when stored
    credentials become unusable; whoever completes an interactive sign-in
    emits ``reauth_success``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._auth_error_handlers: list[AuthErrorHandler] = []
        self._reauth_handlers: list[ReauthHandler] = []

    def on_auth_error(self, handler: AuthErrorHandler) -> None:
        with self._lock:
            self._auth_error_handlers.append(handler)

    def on_reauth_success(self, handler: ReauthHandler) -> None:
        with self._lock:
            self._reauth_handlers.append(handler)

    def emit_auth_error(self, user_id: str | None, message: str) -> AuthErrorEvent:
        event = AuthErrorEvent(user_id=user_id, message=message)
        logger.warning("Mailbox authentication error", user_id=user_id, error=message)
        with self._lock:
            handlers = list(self._auth_error_handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("auth-error handler failed", handler=repr(handler))
        return event

    def emit_reauth_success(self, user_id: str | None = None) -> None:
        logger.info("Mailbox re-authenticated", user_id=user_id)
        with self._lock:
            handlers = list(self._reauth_handlers)
        for handler in handlers:
            try:
                handler(user_id)
            except Exception:
                logger.exception("re-auth handler failed", handler=repr(handler))
