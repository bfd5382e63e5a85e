"""Category to Gmail label id mapping, creating labels on demand."""

from __future__ import annotations

from .categories import CATEGORY_STYLES, Category, label_name, normalize_category
from .constants import FALLBACK_LABEL_COLOR, GMAIL_LABEL_PALETTE
from .errors import ApiError, LabelError, MailboxError
from .log import get_logger

logger = get_logger(__name__)


def _is_conflict(exc: ApiError) -> bool:
    return exc.status == 409 or "exists" in str(exc.body).lower()


def _is_color_error(exc: ApiError) -> bool:
    return exc.status == 400 and "color" in str(exc.body).lower()


def label_color(category: Category) -> tuple[str, str]:
    """The category's color pair, or the fallback when Gmail would reject it."""
    style = CATEGORY_STYLES[category]
    pair = (style.background_color, style.text_color)
    return pair if pair in GMAIL_LABEL_PALETTE else FALLBACK_LABEL_COLOR


class LabelCache:
    """In-memory ``category -> label id`` map for one mailbox."""

    def __init__(self, client, language: str = "fr") -> None:
        self.client = client
        self.language = language
        self.loaded = False
        self._ids: dict[Category, str] = {}
        self._by_name: dict[str, str] = {}

    def ensure_loaded(self) -> None:
        """List labels once and index them by case-insensitive name.

        A failed listing leaves the cache unloaded so the next call tries again.
        """
        if self.loaded:
            return
        try:
            labels = self.client.list_labels()
        except MailboxError as exc:
            logger.warning("Could not load labels", error=str(exc))
            return
        self._index(labels)
        self.loaded = True
        logger.debug("Labels loaded", count=len(labels), mapped=len(self._ids))

    def get_or_create(self, category: Category | str) -> str:
        category = normalize_category(category)
        if category in self._ids:
            return self._ids[category]

        self.ensure_loaded()
        if category in self._ids:
            return self._ids[category]

        name = label_name(category, self.language)
        try:
            label_id = self._create(category, name)
        except MailboxError as exc:
            logger.warning("Label creation failed", category=category.value, error=str(exc))
            return self._last_resort(category, exc)

        self._ids[category] = label_id
        self._by_name[name.lower()] = label_id
        return label_id

    def _create(self, category: Category, name: str) -> str:
        attempts: list[tuple[str, str] | None] = [label_color(category), FALLBACK_LABEL_COLOR, None]
        last_error: ApiError | None = None
        for color in attempts:
            try:
                label = self.client.create_label(name, color)
                logger.info("Label created", name=name, label_id=label["id"])
                return label["id"]
            except ApiError as exc:
                if _is_conflict(exc):
                    found = self._refetch(name)
                    if found:
                        return found
                    raise
                if not _is_color_error(exc):
                    raise
                logger.warning("Label color rejected", name=name, color=color)
                last_error = exc
        raise LabelError(f"Could not create label {name!r}") from last_error

    def _refetch(self, name: str) -> str | None:
        labels = self.client.list_labels()
        self._index(labels)
        self.loaded = True
        return self._by_name.get(name.lower())

    def _last_resort(self, category: Category, cause: Exception) -> str:
        other = self._ids.get(Category.OTHER) or self._by_name.get(label_name(Category.OTHER, self.language).lower())
        if other and category is not Category.OTHER:
            logger.warning("Using the default label instead", category=category.value)
            return other
        raise LabelError(f"No label available for category {category.value}") from cause

    def _index(self, labels: list[dict]) -> None:
        for label in labels:
            name = label.get("name", "")
            if not name or "id" not in label:
                continue
            self._by_name[name.lower()] = label["id"]
            category = self._category_for_name(name)
            if category is not None:
                self._ids.setdefault(category, label["id"])

    def _category_for_name(self, name: str) -> Category | None:
        lowered = name.lower()
        for category in Category:
            if lowered in (label_name(category, lang).lower() for lang in CATEGORY_STYLES[category].names):
                return category
        return None
