"""Deployment settings read from the environment (prefix ``GMAIL_AUTODRAFT_``)."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    BACKGROUND_INTERVAL,
    CONFIG_DIR,
    CONNECTIVITY_TTL,
    CREDENTIALS_FILENAME,
    DATABASE_FILENAME,
    FOREGROUND_INTERVAL,
    INITIAL_DELAY,
    MAX_AUTH_FAILURES,
    PAGE_SIZE,
    PREFERENCES_FILENAME,
    REAUTH_RERUN_DELAY,
    RETRY_ATTEMPTS,
    RETRY_BASE_DELAY,
    RETRY_FACTOR,
    SESSION_FILENAME,
    TOKEN_ENDPOINT,
    TOKEN_FILENAME,
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GMAIL_AUTODRAFT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    home_dir: Path = CONFIG_DIR

    # OAuth client used for the refresh_token grant
    google_client_id: str | None = None
    google_client_secret: str | None = None
    token_uri: str = TOKEN_ENDPOINT

    # External collaborators
    classify_webhook_url: str | None = None
    draft_webhook_url: str | None = None
    webhook_timeout: float = 30.0

    # Driver timers
    foreground_interval: float = FOREGROUND_INTERVAL
    background_interval: float = BACKGROUND_INTERVAL
    initial_delay: float = INITIAL_DELAY
    reauth_rerun_delay: float = REAUTH_RERUN_DELAY
    max_auth_failures: int = MAX_AUTH_FAILURES

    # API client
    retry_attempts: int = RETRY_ATTEMPTS
    retry_base_delay: float = RETRY_BASE_DELAY
    retry_factor: float = RETRY_FACTOR
    page_size: int = PAGE_SIZE
    connectivity_host: str = "gmail.googleapis.com"
    connectivity_ttl: float = CONNECTIVITY_TTL

    language: str = "fr"

    log_level: str = "INFO"
    log_json: bool = False

    @property
    def client_secrets_path(self) -> Path:
        return self.home_dir / CREDENTIALS_FILENAME

    @property
    def token_path(self) -> Path:
        return self.home_dir / TOKEN_FILENAME

    @property
    def session_path(self) -> Path:
        return self.home_dir / SESSION_FILENAME

    @property
    def database_path(self) -> Path:
        return self.home_dir / DATABASE_FILENAME

    @property
    def preferences_path(self) -> Path:
        return self.home_dir / PREFERENCES_FILENAME


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()
