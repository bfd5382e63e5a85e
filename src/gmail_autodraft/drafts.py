"""Draft identifiers, draft links and reply MIME construction."""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass
from email.message import EmailMessage
from email.policy import SMTP
from typing import Literal

from .constants import DRAFT_URL_TEMPLATE, SYNTHETIC_REFERENCE_TEMPLATE
from .gmail_client import parse_from_header
from .models import CreatedDraft, MessageEnvelope

_UI_ID_RE = re.compile(r"(?:compose=|/drafts/)([^&/?#]+)")


@dataclass(frozen=True)
class DraftRef:
    """A draft addressed either by its API id or by the id the web UI shows."""

    kind: Literal["api", "ui"]
    id: str

    @classmethod
    def parse(cls, value: str) -> DraftRef:
        """Parse a raw draft id or a Gmail web UI draft URL."""
        value = (value or "").strip()
        if not value:
            raise ValueError("Empty draft reference")
        if "compose=" in value or "/drafts/" in value:
            m = _UI_ID_RE.search(value)
            if not m:
                raise ValueError(f"Unrecognized draft URL: {value}")
            return cls("ui", m.group(1))
        return cls("api", value)


def draft_url(draft: CreatedDraft) -> str:
    return DRAFT_URL_TEMPLATE.format(ui_id=draft.ui_id)


def reply_subject(subject: str) -> str:
    subject = subject or ""
    return subject if subject.lower().startswith("re:") else f"Re: {subject}"


def thread_references(thread: dict) -> list[str]:
    """Message-ID headers of every message in a thread, oldest first."""
    refs: list[str] = []
    for message in thread.get("messages", []):
        for header in message.get("payload", {}).get("headers", []):
            if header.get("name", "").lower() == "message-id" and header.get("value"):
                refs.append(header["value"])
    return refs


def build_reply(
    envelope: MessageEnvelope,
    html_body: str,
    references: list[str] | None = None,
    from_email: str | None = None,
) -> str:
    """Build the base64url-encoded RFC 2822 reply to ``envelope``.

    ``In-Reply-To`` is the last known Message-ID of the thread; without any,
    a reference is synthesized from the thread id so Gmail still threads it.
    """
    refs = list(references or [])
    if not refs and envelope.rfc_message_id:
        refs = [envelope.rfc_message_id]
    if not refs:
        refs = [SYNTHETIC_REFERENCE_TEMPLATE.format(thread_id=envelope.thread_id)]

    if "<html" not in html_body.lower():
        html_body = f"<html><body>{html_body}</body></html>"

    _, to_addr = parse_from_header(envelope.sender)

    msg = EmailMessage()
    msg["To"] = to_addr or envelope.sender
    if from_email:
        msg["From"] = from_email
    msg["Subject"] = reply_subject(envelope.subject)
    msg["In-Reply-To"] = refs[-1]
    msg["References"] = " ".join(refs)
    msg.set_content(html_body, subtype="html")

    return base64.urlsafe_b64encode(msg.as_bytes(policy=SMTP)).decode("ascii")
