"""Tests for draft references and reply construction."""

import base64
from email import message_from_bytes
from email.policy import default

import pytest
from conftest import make_envelope

from gmail_autodraft.drafts import DraftRef, build_reply, draft_url, reply_subject, thread_references
from gmail_autodraft.models import CreatedDraft


def _decode(raw):
    return message_from_bytes(base64.urlsafe_b64decode(raw), policy=default)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("r-123456", DraftRef("api", "r-123456")),
        ("  r-123456 ", DraftRef("api", "r-123456")),
        ("https://mail.google.com/mail/u/0/#drafts?compose=18f2a9c", DraftRef("ui", "18f2a9c")),
        ("https://mail.google.com/mail/u/0/#drafts?compose=18f2a9c&tab=x", DraftRef("ui", "18f2a9c")),
        ("https://mail.google.com/mail/u/1/#drafts/18f2a9c", DraftRef("ui", "18f2a9c")),
    ],
)
def test_parse_draft_ref(value, expected):
    assert DraftRef.parse(value) == expected


@pytest.mark.parametrize("value", ["", "   ", "https://mail.google.com/#drafts?compose="])
def test_parse_draft_ref_rejects(value):
    with pytest.raises(ValueError):
        DraftRef.parse(value)


def test_draft_url_prefers_message_id():
    assert draft_url(CreatedDraft("r-1", "abc")).endswith("#drafts?compose=abc")
    assert draft_url(CreatedDraft("r-1")).endswith("#drafts?compose=r-1")


@pytest.mark.parametrize(
    "subject, expected",
    [("Colis", "Re: Colis"), ("Re: Colis", "Re: Colis"), ("RE: Colis", "RE: Colis"), ("", "Re: ")],
)
def test_reply_subject(subject, expected):
    assert reply_subject(subject) == expected


def test_thread_references_in_order():
    thread = {
        "messages": [
            {"payload": {"headers": [{"name": "Message-ID", "value": "<a@x>"}]}},
            {"payload": {"headers": [{"name": "Subject", "value": "Re"}]}},
            {"payload": {"headers": [{"name": "Message-Id", "value": "<b@x>"}]}},
        ]
    }
    assert thread_references(thread) == ["<a@x>", "<b@x>"]
    assert thread_references({}) == []


def test_build_reply_threads_on_last_reference():
    raw = build_reply(
        make_envelope(1), "<p>Bonjour Marie</p>", references=["<a@x>", "<b@x>"], from_email="shop@example.com"
    )
    msg = _decode(raw)

    assert msg["To"] == "marie@example.com"
    assert msg["From"] == "shop@example.com"
    assert msg["Subject"] == "Re: Où est ma commande #1001 ?"
    assert msg["In-Reply-To"] == "<b@x>"
    assert msg["References"] == "<a@x> <b@x>"
    assert msg.get_content_type() == "text/html"
    assert msg.get_content().strip() == "<html><body><p>Bonjour Marie</p></body></html>"


def test_build_reply_synthesizes_reference():
    envelope = make_envelope(1, rfc_message_id="")

    msg = _decode(build_reply(envelope, "<html><body>Hi</body></html>"))

    assert msg["In-Reply-To"] == "<thread1@mail.gmail.com>"
    assert msg["From"] is None
    assert msg.get_content().strip() == "<html><body>Hi</body></html>"


def test_build_reply_is_urlsafe():
    raw = build_reply(make_envelope(1), "<p>" + "é?>" * 200 + "</p>")
    assert "+" not in raw and "/" not in raw
