"""Read-only access to per-user automation preferences."""

from __future__ import annotations

import json
from pathlib import Path

from .log import get_logger
from .models import UserPreferences

logger = get_logger(__name__)


class PreferenceStore:
    """Preferences kept in a JSON file keyed by user id.

    The file is maintained elsewhere; a missing or unreadable file, or a user
    without an entry, yields the defaults (everything enabled, no delay).
    """

    def __init__(self, path: Path, language: str = "fr") -> None:
        self.path = Path(path)
        self.language = language

    def get(self, user_id: str) -> UserPreferences:
        if not self.path.exists():
            return UserPreferences(language=self.language)
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as exc:
            logger.warning("Unreadable preferences, using defaults", path=str(self.path), error=str(exc))
            return UserPreferences(language=self.language)

        entry = data.get(user_id) if isinstance(data, dict) else None
        return UserPreferences.from_dict(entry if isinstance(entry, dict) else None, language=self.language)
