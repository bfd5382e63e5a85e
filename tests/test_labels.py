"""Tests for the category label cache."""

import pytest
from conftest import FakeMailboxClient

from gmail_autodraft.categories import Category, label_name
from gmail_autodraft.constants import FALLBACK_LABEL_COLOR
from gmail_autodraft.errors import ApiError, LabelError, NetworkError
from gmail_autodraft.labels import LabelCache


def test_ensure_loaded_maps_existing_labels_case_insensitively():
    client = FakeMailboxClient(
        labels=[
            {"id": "L1", "name": label_name(Category.DELIVERY, "fr").upper()},
            {"id": "L2", "name": label_name(Category.REFUND, "en")},
            {"id": "INBOX", "name": "INBOX"},
        ]
    )
    cache = LabelCache(client)

    cache.ensure_loaded()
    cache.ensure_loaded()

    assert client.label_list_calls == 1
    assert cache.get_or_create(Category.DELIVERY) == "L1"
    assert cache.get_or_create("💸 Remboursement") == "L2"
    assert client.created_labels == []


def test_failed_load_stays_unloaded():
    client = FakeMailboxClient()
    client.label_list_error = NetworkError("down")
    cache = LabelCache(client)

    cache.ensure_loaded()
    assert not cache.loaded

    client.label_list_error = None
    cache.ensure_loaded()
    assert cache.loaded
    assert client.label_list_calls == 2


def test_creates_missing_label_with_category_color():
    client = FakeMailboxClient()
    cache = LabelCache(client)

    label_id = cache.get_or_create(Category.RETURN)

    assert client.created_labels == [(label_name(Category.RETURN, "fr"), ("#ffad47", "#000000"))]
    assert cache.get_or_create("retour") == label_id
    assert len(client.created_labels) == 1


def test_normalizes_before_lookup():
    client = FakeMailboxClient()
    cache = LabelCache(client)

    first = cache.get_or_create("unknown category text")
    second = cache.get_or_create(Category.OTHER)

    assert first == second
    assert len(client.created_labels) == 1


def test_conflict_refetches_existing_label():
    client = FakeMailboxClient()
    cache = LabelCache(client)
    cache.ensure_loaded()
    # Created by someone else after our listing
    client.labels.append({"id": "L9", "name": label_name(Category.SPAM, "fr")})
    client.create_label_errors = [ApiError("Label name exists or conflicts", status=409)]

    assert cache.get_or_create(Category.SPAM) == "L9"


def test_color_rejection_falls_back_then_drops_color():
    client = FakeMailboxClient()
    color_error = ApiError("bad", status=400, body={"error": {"message": "Label color is not allowed"}})
    client.create_label_errors = [color_error, ApiError("bad", status=400, body="invalid color")]
    cache = LabelCache(client)

    label_id = cache.get_or_create(Category.PRESALE)

    colors = [color for _, color in client.created_labels]
    assert colors == [("#a479e2", "#ffffff"), FALLBACK_LABEL_COLOR, None]
    assert label_id


def test_unrelated_error_uses_other_label_as_last_resort():
    client = FakeMailboxClient(labels=[{"id": "L_OTHER", "name": label_name(Category.OTHER, "fr")}])
    client.create_label_errors = [ApiError("forbidden", status=403)]
    cache = LabelCache(client)

    assert cache.get_or_create(Category.CANCELLATION) == "L_OTHER"


def test_gives_up_with_label_error():
    client = FakeMailboxClient()
    client.create_label_errors = [ApiError("forbidden", status=403)]
    cache = LabelCache(client)

    with pytest.raises(LabelError):
        cache.get_or_create(Category.CANCELLATION)


def test_english_label_names():
    client = FakeMailboxClient()
    cache = LabelCache(client, language="en")

    cache.get_or_create(Category.RESOLVED)

    assert client.created_labels[0][0] == "🔒 Resolved"
