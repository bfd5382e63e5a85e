"""Constants for Gmail Autodraft."""

from pathlib import Path

# --- Config paths ---
CONFIG_DIR = Path.home() / ".gmail-autodraft"
CREDENTIALS_FILENAME = "credentials.json"  # OAuth client secrets
TOKEN_FILENAME = "token.json"
SESSION_FILENAME = "session.json"
DATABASE_FILENAME = "autodraft.db"
PREFERENCES_FILENAME = "preferences.json"

# --- Gmail API ---
SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "openid",
]
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
UNREAD_QUERY = "in:inbox is:unread"
PAGE_SIZE = 10  # unread messages per polling cycle
BATCH_SIZE = 50  # messages per BatchHttpRequest
DEFAULT_TOKEN_TTL = 3600  # seconds, when the grant omits expires_in
TOKEN_EXPIRY_SKEW = 60  # seconds

# --- Retry ---
RETRY_ATTEMPTS = 3
RETRY_BASE_DELAY = 0.5  # seconds
RETRY_FACTOR = 2

# --- Driver ---
FOREGROUND_INTERVAL = 60  # seconds
BACKGROUND_INTERVAL = 300  # seconds
INITIAL_DELAY = 10  # seconds
REAUTH_RERUN_DELAY = 5  # seconds
CONNECTIVITY_TTL = 15  # seconds a connectivity probe result is reused
MAX_AUTH_FAILURES = 3
SESSION_MAX_AGE_DAYS = 30

# --- Drafts ---
DRAFT_URL_TEMPLATE = "https://mail.google.com/mail/u/0/#drafts?compose={ui_id}"
SYNTHETIC_REFERENCE_TEMPLATE = "<{thread_id}@mail.gmail.com>"

# --- Labels ---
# Characters Gmail rejects (or treats as nesting) in label names
LABEL_NAME_FORBIDDEN = '/\\:*?"<>|'

# Colors accepted by the Gmail labels API
GMAIL_LABEL_PALETTE = [
    ("#000000", "#ffffff"),
    ("#434343", "#ffffff"),
    ("#666666", "#ffffff"),
    ("#999999", "#ffffff"),
    ("#cccccc", "#000000"),
    ("#efefef", "#000000"),
    ("#f3f3f3", "#000000"),
    ("#ffffff", "#000000"),
    ("#fb4c2f", "#ffffff"),
    ("#ffad47", "#000000"),
    ("#fad165", "#000000"),
    ("#16a766", "#ffffff"),
    ("#43d692", "#000000"),
    ("#4a86e8", "#ffffff"),
    ("#a479e2", "#ffffff"),
    ("#f691b3", "#000000"),
    ("#f6c5be", "#000000"),
    ("#ffe6c7", "#000000"),
    ("#fef1d1", "#000000"),
    ("#b9e4d0", "#000000"),
    ("#c6f3de", "#000000"),
    ("#c9daf8", "#000000"),
    ("#e4d7f5", "#000000"),
    ("#fcdee8", "#000000"),
    ("#efa093", "#000000"),
    ("#ffd6a2", "#000000"),
    ("#ffe8a1", "#000000"),
    ("#83d6a0", "#000000"),
    ("#a0eac9", "#000000"),
    ("#a4c2f4", "#000000"),
    ("#d0bcf1", "#000000"),
    ("#fbc8d9", "#000000"),
]
FALLBACK_LABEL_COLOR = GMAIL_LABEL_PALETTE[0]

# --- Display ---
ACTIVITY_LIST_LIMIT = 25
