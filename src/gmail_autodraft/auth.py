"""Interactive sign-in and Gmail service construction."""

from __future__ import annotations

import json
from dataclasses import dataclass

import google_auth_httplib2
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import Resource, build
from googleapiclient.http import build_http

from .config import Settings
from .constants import DEFAULT_TOKEN_TTL, SCOPES
from .errors import AuthError
from .log import get_logger
from .models import TokenPair, utcnow

logger = get_logger(__name__)


@dataclass
class SignInResult:
    tokens: TokenPair
    ttl_seconds: int
    email: str
    user_id: str


def load_client_config(settings: Settings) -> tuple[str | None, str | None, str]:
    """Return ``(client_id, client_secret, token_uri)`` for the refresh grant.

    Environment settings win; otherwise the OAuth client secrets file is read.
    """
    if settings.google_client_id and settings.google_client_secret:
        return settings.google_client_id, settings.google_client_secret, settings.token_uri

    path = settings.client_secrets_path
    if not path.exists():
        return settings.google_client_id, settings.google_client_secret, settings.token_uri
    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError) as exc:
        logger.warning("Unreadable client secrets file", path=str(path), error=str(exc))
        return settings.google_client_id, settings.google_client_secret, settings.token_uri

    client = data.get("installed") or data.get("web") or {}
    return (
        settings.google_client_id or client.get("client_id"),
        settings.google_client_secret or client.get("client_secret"),
        client.get("token_uri") or settings.token_uri,
    )


def build_credentials(access_token: str) -> Credentials:
    """Bearer-only credentials.

    No refresh token and no expiry are attached, so google-auth never
    refreshes on its own; refresh goes through TokenRefreshManager.
    """
    return Credentials(token=access_token)


def build_gmail_service(credentials: Credentials, http=None) -> Resource:
    """Return a Gmail API service whose transport never auto-refreshes on 401."""
    http = google_auth_httplib2.AuthorizedHttp(credentials, http=http or build_http(), refresh_status_codes=())
    return build("gmail", "v1", http=http, cache_discovery=False)


def run_sign_in(settings: Settings) -> SignInResult:
    """Run the OAuth browser flow and return the granted tokens.

    Requires the OAuth client secrets file at ``settings.client_secrets_path``.
    """
    secrets = settings.client_secrets_path
    if not secrets.exists():
        raise FileNotFoundError(
            f"Credentials file not found at {secrets}.\n"
            "Download your OAuth client credentials from the Google Cloud Console "
            "and save them as:\n"
            f"  {secrets}"
        )

    flow = InstalledAppFlow.from_client_secrets_file(str(secrets), SCOPES)
    creds = flow.run_local_server(port=0, access_type="offline", prompt="consent")
    if not creds.token:
        raise AuthError("Sign-in did not return an access token")

    ttl = DEFAULT_TOKEN_TTL
    if creds.expiry is not None:
        # google-auth keeps expiry as naive UTC
        ttl = max(0, int((creds.expiry.replace(tzinfo=utcnow().tzinfo) - utcnow()).total_seconds()))

    profile = build_gmail_service(build_credentials(creds.token)).users().getProfile(userId="me").execute()
    email = profile["emailAddress"]
    logger.info("Signed in", email=email, renewable=bool(creds.refresh_token))
    return SignInResult(
        tokens=TokenPair(access_token=creds.token, refresh_token=creds.refresh_token),
        ttl_seconds=ttl,
        email=email,
        user_id=email.lower(),
    )
