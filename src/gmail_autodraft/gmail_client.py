"""Gmail API client with retry, refresh-on-401 and offline short-circuit."""

from __future__ import annotations

import html
import json
import re
from typing import Any, Callable

import httplib2
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from .constants import (
    BATCH_SIZE,
    PAGE_SIZE,
    RETRY_ATTEMPTS,
    RETRY_BASE_DELAY,
    RETRY_FACTOR,
    UNREAD_QUERY,
)
from .errors import ApiError, NetworkError
from .log import get_logger
from .models import CreatedDraft, MessageEnvelope, SentMessage
from .tokens import TokenRefreshManager

logger = get_logger(__name__)

_FROM_RE = re.compile(r"^(.*?)\s*<([^>]+)>$")

METADATA_HEADERS = ["From", "Subject", "Date", "Message-ID"]


class _Unauthorized(Exception):
    """Internal marker for an HTTP 401 from the API."""


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, NetworkError)


def _error_body(exc: HttpError) -> Any:
    content = exc.content.decode("utf-8", "replace") if isinstance(exc.content, bytes) else exc.content
    try:
        return json.loads(content)
    except (TypeError, ValueError):
        return content


def _translate_http_error(exc: HttpError) -> Exception:
    status = exc.resp.status
    if status == 401:
        return _Unauthorized(str(exc))
    if status >= 500:
        return NetworkError(f"Gmail API server error {status}", status=status, body=_error_body(exc))
    return ApiError(f"Gmail API request failed with status {status}", status=status, body=_error_body(exc))


def parse_from_header(from_value: str) -> tuple[str, str]:
    """Parse a From header into (display name, email address).

    Handles formats like:
      "John Doe <john@example.com>" -> ("John Doe", "john@example.com")
      "<john@example.com>"          -> ("", "john@example.com")
      "john@example.com"            -> ("", "john@example.com")
    """
    if not from_value:
        return ("", "")
    m = _FROM_RE.match(from_value.strip())
    if m:
        name = m.group(1).strip().strip('"').strip("'")
        return (name, m.group(2).strip())
    email = from_value.strip().strip("<>")
    return ("", email)


def _headers(payload: dict) -> dict[str, str]:
    return {h["name"].lower(): h["value"] for h in payload.get("headers", [])}


def envelope_from_response(response: dict) -> MessageEnvelope:
    headers = _headers(response.get("payload", {}))
    return MessageEnvelope(
        id=response["id"],
        thread_id=response.get("threadId", ""),
        subject=headers.get("subject", ""),
        sender=headers.get("from", ""),
        snippet=html.unescape(response.get("snippet", "")),
        internal_date=str(response.get("internalDate", "")),
        labels=response.get("labelIds", []),
        rfc_message_id=headers.get("message-id", ""),
    )


class _DetailBatch:
    """One BatchHttpRequest for a chunk of message ids.

    Rebuilt on every attempt so a retry never re-executes a spent batch.
    Per-message errors are logged and the message dropped. A 401 item makes
    the library attempt its own credential refresh, which raises
    ``RefreshError``; either way the whole chunk goes through token refresh.
    """

    def __init__(self, service, message_ids: list[str]) -> None:
        self.service = service
        self.message_ids = message_ids

    def execute(self) -> list[MessageEnvelope]:
        results: dict[str, MessageEnvelope] = {}
        unauthorized: list[HttpError] = []

        def _cb(request_id, response, exception):
            if exception is not None:
                if isinstance(exception, HttpError) and exception.resp.status == 401:
                    unauthorized.append(exception)
                else:
                    logger.warning("Message detail fetch failed", message_id=request_id, error=str(exception))
                return
            try:
                results[request_id] = envelope_from_response(response)
            except (KeyError, TypeError) as exc:
                logger.warning("Malformed message detail", message_id=request_id, error=str(exc))

        batch = self.service.new_batch_http_request()
        for msg_id in self.message_ids:
            batch.add(
                self.service.users().messages().get(
                    userId="me",
                    id=msg_id,
                    format="metadata",
                    metadataHeaders=METADATA_HEADERS,
                ),
                callback=_cb,
                request_id=msg_id,
            )
        batch.execute()

        if unauthorized:
            raise unauthorized[0]
        return [results[i] for i in self.message_ids if i in results]


class GmailClient:
    """Executes Gmail API calls for one connected mailbox.

    * Network failures and 5xx responses are retried with exponential backoff
      (``attempts`` tries, ``base_delay`` seconds doubled by ``factor``).
    * Other 4xx responses raise ``ApiError`` immediately.
    * A 401 triggers one refresh through the token manager and one retry of
      the original request; a second 401 clears the credentials and raises
      ``AuthError``.
    * When offline, calls fail with ``NetworkError(status=0)`` without
      touching the network.
    """

    def __init__(
        self,
        service,
        tokens: TokenRefreshManager,
        *,
        is_online: Callable[[], bool] = lambda: True,
        attempts: int = RETRY_ATTEMPTS,
        base_delay: float = RETRY_BASE_DELAY,
        factor: float = RETRY_FACTOR,
        page_size: int = PAGE_SIZE,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.service = service
        self.tokens = tokens
        self.is_online = is_online
        self.attempts = attempts
        self.base_delay = base_delay
        self.factor = factor
        self.page_size = page_size
        self._sleep = sleep

    # --- core ---

    def execute(self, build_request: Callable[[], Any], action: str = "request") -> Any:
        """Run ``build_request().execute()`` under the retry and refresh policy."""
        if not self.is_online():
            raise NetworkError(f"Offline: {action} not sent", status=0)

        refreshed = False
        while True:
            token_used = self.tokens.access_token
            try:
                return self._execute_with_retry(build_request, action)
            except _Unauthorized as exc:
                if refreshed:
                    raise self.tokens.fail("Mailbox rejected the refreshed credentials") from exc
                logger.info("Access token rejected, refreshing", action=action)
                self.tokens.refresh(stale_token=token_used)
                refreshed = True

    def _execute_with_retry(self, build_request: Callable[[], Any], action: str) -> Any:
        kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep

        def _log_retry(retry_state) -> None:
            logger.warning(
                "Transient Gmail failure, retrying",
                action=action,
                attempt=retry_state.attempt_number,
                error=str(retry_state.outcome.exception()),
            )

        retrying = Retrying(
            retry=retry_if_exception(_is_transient),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=self.factor),
            stop=stop_after_attempt(self.attempts),
            before_sleep=_log_retry,
            reraise=True,
            **kwargs,
        )
        return retrying(self._call_once, build_request)

    @staticmethod
    def _call_once(build_request: Callable[[], Any]) -> Any:
        try:
            return build_request().execute()
        except HttpError as exc:
            raise _translate_http_error(exc) from exc
        except RefreshError as exc:
            # BatchHttpRequest refreshes the bearer-only credentials itself on a
            # 401 item, which always fails; treat it as the 401 it stands for.
            raise _Unauthorized(str(exc)) from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            raise NetworkError(f"Gmail API unreachable: {exc}", status=0) from exc

    def _users(self):
        return self.service.users()

    # --- messages ---

    def list_unread_ids(self, max_results: int | None = None) -> list[str]:
        """Ids of unread inbox messages, one bounded page."""
        resp = self.execute(
            lambda: self._users().messages().list(
                userId="me",
                q=UNREAD_QUERY,
                maxResults=max_results or self.page_size,
                fields="messages/id,nextPageToken",
            ),
            action="list unread",
        )
        return [m["id"] for m in resp.get("messages", [])]

    def fetch_messages(self, message_ids: list[str]) -> list[MessageEnvelope]:
        """Fetch metadata for messages in batches; failed messages are dropped."""
        envelopes: list[MessageEnvelope] = []
        for start in range(0, len(message_ids), BATCH_SIZE):
            chunk = message_ids[start : start + BATCH_SIZE]
            envelopes.extend(self.execute(lambda: _DetailBatch(self.service, chunk), action="fetch details"))
        return envelopes

    def modify_labels(self, message_id: str, add: list[str] | None = None, remove: list[str] | None = None) -> None:
        self.execute(
            lambda: self._users().messages().modify(
                userId="me",
                id=message_id,
                body={"addLabelIds": add or [], "removeLabelIds": remove or []},
            ),
            action="modify labels",
        )

    def mark_read(self, message_id: str) -> None:
        self.modify_labels(message_id, remove=["UNREAD"])

    def get_thread(self, thread_id: str) -> dict:
        return self.execute(
            lambda: self._users().threads().get(
                userId="me", id=thread_id, format="metadata", metadataHeaders=["Message-ID"]
            ),
            action="get thread",
        )

    # --- labels ---

    def list_labels(self) -> list[dict]:
        resp = self.execute(lambda: self._users().labels().list(userId="me"), action="list labels")
        return resp.get("labels", [])

    def create_label(self, name: str, color: tuple[str, str] | None = None) -> dict:
        body: dict[str, Any] = {
            "name": name,
            "labelListVisibility": "labelShow",
            "messageListVisibility": "show",
        }
        if color is not None:
            body["color"] = {"backgroundColor": color[0], "textColor": color[1]}
        return self.execute(lambda: self._users().labels().create(userId="me", body=body), action="create label")

    # --- drafts ---

    def create_draft(self, raw: str, thread_id: str | None = None) -> CreatedDraft:
        message: dict[str, Any] = {"raw": raw}
        if thread_id:
            message["threadId"] = thread_id
        resp = self.execute(
            lambda: self._users().drafts().create(userId="me", body={"message": message}),
            action="create draft",
        )
        return CreatedDraft(draft_id=resp["id"], message_id=(resp.get("message") or {}).get("id"))

    def list_drafts(self) -> list[dict]:
        drafts: list[dict] = []
        page_token: str | None = None
        while True:
            kwargs: dict[str, Any] = {"userId": "me"}
            if page_token:
                kwargs["pageToken"] = page_token
            resp = self.execute(lambda: self._users().drafts().list(**kwargs), action="list drafts")
            drafts.extend(resp.get("drafts", []))
            page_token = resp.get("nextPageToken")
            if not page_token:
                return drafts

    def send_draft(self, draft_id: str) -> SentMessage:
        resp = self.execute(
            lambda: self._users().drafts().send(userId="me", body={"id": draft_id}),
            action="send draft",
        )
        return SentMessage(id=resp.get("id", ""), thread_id=resp.get("threadId", ""))

    def get_profile(self) -> dict:
        return self.execute(lambda: self._users().getProfile(userId="me"), action="get profile")
