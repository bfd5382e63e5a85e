"""Customer-email categories, their labels, and category-name normalization."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .constants import LABEL_NAME_FORBIDDEN


class Category(str, Enum):
    DELIVERY = "delivery"
    CANCELLATION = "cancellation"
    REFUND = "refund"
    RETURN = "return"
    PRESALE = "presale"
    RESOLVED = "resolved"
    SPAM = "spam"
    OTHER = "other"


DEFAULT_CATEGORY = Category.OTHER


@dataclass(frozen=True)
class CategoryStyle:
    emoji: str
    names: dict[str, str]  # language -> display name
    background_color: str
    text_color: str


CATEGORY_STYLES: dict[Category, CategoryStyle] = {
    Category.DELIVERY: CategoryStyle(
        "📦", {"fr": "Livraison / Suivi de commande", "en": "Delivery / Order tracking"}, "#4a86e8", "#ffffff"
    ),
    Category.CANCELLATION: CategoryStyle(
        "❌", {"fr": "Annulation", "en": "Cancellation"}, "#fb4c2f", "#ffffff"
    ),
    Category.REFUND: CategoryStyle("💸", {"fr": "Remboursement", "en": "Refund"}, "#16a766", "#ffffff"),
    Category.RETURN: CategoryStyle("🔁", {"fr": "Retour", "en": "Return"}, "#ffad47", "#000000"),
    Category.PRESALE: CategoryStyle("🛍", {"fr": "Avant-vente", "en": "Pre-sale"}, "#a479e2", "#ffffff"),
    Category.RESOLVED: CategoryStyle("🔒", {"fr": "Résolu", "en": "Resolved"}, "#43d692", "#000000"),
    Category.SPAM: CategoryStyle("🚫", {"fr": "Spam / à ignorer", "en": "Spam / ignore"}, "#666666", "#ffffff"),
    Category.OTHER: CategoryStyle("🧾", {"fr": "Autres", "en": "Other"}, "#a4c2f4", "#000000"),
}

# Checked in this order; the first category with a matching keyword wins.
CATEGORY_KEYWORDS: list[tuple[Category, tuple[str, ...]]] = [
    (Category.DELIVERY, ("livraison", "delivery", "shipping", "suivi")),
    (Category.CANCELLATION, ("annulation", "cancel")),
    (Category.REFUND, ("remboursement", "refund")),
    (Category.RETURN, ("retour", "return")),
    (Category.PRESALE, ("avant-vente", "presale", "pre-sale", "question")),
    (Category.RESOLVED, ("résolu", "resolu", "resolved")),
    (Category.SPAM, ("spam", "ignore")),
]


def display_name(category: Category, language: str = "fr") -> str:
    """Return ``"<emoji> <name>"`` for the category in the given language."""
    style = CATEGORY_STYLES[category]
    name = style.names.get(language) or style.names["en"]
    return f"{style.emoji} {name}"


def sanitize_label_name(name: str) -> str:
    """Replace characters Gmail rejects in label names with '-'."""
    return "".join("-" if ch in LABEL_NAME_FORBIDDEN else ch for ch in name)


def label_name(category: Category, language: str = "fr") -> str:
    return sanitize_label_name(display_name(category, language))


def normalize_category(value: str | Category | None) -> Category:
    """Map an arbitrary category string to one of the standard categories.

    Tries, in order: an exact match on the category key or any display name
    (in any language), a shared emoji, keywords from the French and English
    lists, and finally the default category.
    """
    if isinstance(value, Category):
        return value
    if not value or not isinstance(value, str) or not value.strip():
        return DEFAULT_CATEGORY

    text = value.strip()
    lowered = text.lower()

    for category, style in CATEGORY_STYLES.items():
        if lowered == category.value:
            return category
        for language in style.names:
            if lowered in (display_name(category, language).lower(), label_name(category, language).lower()):
                return category

    for category, style in CATEGORY_STYLES.items():
        if style.emoji in text:
            return category

    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category

    return DEFAULT_CATEGORY
