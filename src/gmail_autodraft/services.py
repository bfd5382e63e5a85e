"""HTTP clients for the external classification and draft-generation services."""

from __future__ import annotations

import html
from typing import Any

import requests

from .categories import DEFAULT_CATEGORY, Category, display_name, normalize_category
from .errors import ServiceDegradedError
from .gmail_client import parse_from_header
from .log import get_logger

logger = get_logger(__name__)

_FALLBACK_REPLIES = {
    "fr": (
        "<p>Bonjour {name},</p>\n"
        "<p>Merci pour votre message.</p>\n"
        "<p>J'ai bien reçu votre demande et je vais l'examiner attentivement. "
        "Je reviendrai vers vous dans les plus brefs délais.</p>\n"
        "<p>Cordialement,</p>"
    ),
    "en": (
        "<p>Hello {name},</p>\n"
        "<p>Thank you for your message.</p>\n"
        "<p>I have received your request and will look into it carefully. "
        "I will get back to you as soon as possible.</p>\n"
        "<p>Best regards,</p>"
    ),
}


def _post_json(session: requests.Session, url: str | None, payload: dict, timeout: float) -> dict:
    if not url:
        raise ServiceDegradedError("Service endpoint is not configured")
    try:
        resp = session.post(url, json=payload, timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as exc:
        raise ServiceDegradedError(f"Service call failed: {exc}") from exc
    if not isinstance(data, dict):
        raise ServiceDegradedError("Service returned a non-object response")
    return data


def _first_text(data: dict, *keys: str) -> str | None:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def first_name(sender: str) -> str:
    """First word of the sender's display name (or of the address when unnamed)."""
    name, email = parse_from_header(sender)
    source = name or email.split("@")[0]
    return source.split()[0] if source.split() else ""


def fallback_reply(sender: str, language: str = "fr", signature: str = "") -> str:
    template = _FALLBACK_REPLIES.get(language, _FALLBACK_REPLIES["en"])
    reply = template.format(name=html.escape(first_name(sender)))
    if signature:
        reply += f"\n<p>{signature}</p>"
    return reply


class ClassificationClient:
    """Asks the classification service for a category; never raises."""

    def __init__(self, url: str | None, timeout: float = 30.0, session: requests.Session | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def classify(self, subject: str, body: str) -> Category:
        try:
            data = _post_json(self.session, self.url, {"subject": subject or "", "body": body or ""}, self.timeout)
        except ServiceDegradedError as exc:
            logger.warning("Classification unavailable, using default category", error=str(exc))
            return DEFAULT_CATEGORY

        raw = _first_text(data, "category", "output")
        if raw is None:
            logger.warning("Classification returned no category", response=data)
            return DEFAULT_CATEGORY
        category = normalize_category(raw)
        logger.debug("Message classified", raw=raw, category=category.value)
        return category


class DraftGenerator:
    """Asks the draft service for reply HTML, falling back to a canned reply."""

    def __init__(self, url: str | None, timeout: float = 30.0, session: requests.Session | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def generate(
        self,
        *,
        subject: str,
        body: str,
        category: Category,
        sender: str,
        signature: str = "",
        language: str = "fr",
        email_address: str | None = None,
        shop_domain: str | None = None,
        shop_access_token: str | None = None,
    ) -> str:
        payload: dict[str, Any] = {
            "subject": subject or "",
            "body": body or "",
            "category": display_name(category, language),
            "sender": sender or "",
            "signature": signature or "",
        }
        if email_address:
            payload["emailAddress"] = email_address
        if shop_domain and shop_access_token:
            payload["shopDomain"] = shop_domain
            payload["shopAccessToken"] = shop_access_token

        try:
            data = _post_json(self.session, self.url, payload, self.timeout)
        except ServiceDegradedError as exc:
            logger.warning("Draft generation unavailable, using fallback reply", error=str(exc))
            return fallback_reply(sender, language, signature)

        content = _first_text(data, "draftReply", "message", "draft", "output")
        if content is None:
            logger.warning("Draft service returned no content, using fallback reply")
            return fallback_reply(sender, language, signature)
        return content
