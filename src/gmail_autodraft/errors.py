"""Exception hierarchy shared by the mailbox client, pipeline and driver."""

from __future__ import annotations

from typing import Any


class MailboxError(Exception):
    """Base class for every error raised by gmail_autodraft."""


class AuthError(MailboxError):
    """Stored credentials are unusable; the user has to reconnect the mailbox.

    ``signalled`` is True when the auth-error signal has already been emitted
    for this failure, so callers higher up do not emit it a second time.
    """

    def __init__(self, message: str, user_id: str | None = None, signalled: bool = False) -> None:
        super().__init__(message)
        self.user_id = user_id
        self.signalled = signalled


class NetworkError(MailboxError):
    """Transient failure: no response, timeout, or a 5xx from the server.

    ``status`` is 0 when no HTTP response was received.
    """

    def __init__(self, message: str, status: int = 0, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class ApiError(MailboxError):
    """Non-retryable API failure (4xx other than 401, malformed request)."""

    def __init__(self, message: str, status: int = 0, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class ValidationError(MailboxError):
    """Local state is malformed (e.g. an activity record without draft id)."""


class LabelError(MailboxError):
    """A label could neither be found nor created."""


class ServiceDegradedError(MailboxError):
    """An external collaborator (classifier, draft generator) is unavailable."""


class IntegrationPermissionError(MailboxError):
    """The integration record cannot be read with the current permissions."""

    def __init__(self, message: str = "Missing or insufficient permissions for integration") -> None:
        super().__init__(message)


class PersistenceError(MailboxError):
    """An activity record could not be stored; the run must stop."""
