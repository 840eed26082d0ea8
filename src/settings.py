"""Static configuration for channel-portal.

All user-editable settings (database, security, ingestion, logging) live in
a single JSON file for quick edits without touching Python. Secrets come
from the environment (see ``client.py`` and ``get_session.py``).
"""

import json
import os

from dotenv import load_dotenv

load_dotenv()

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# config.json sits in the project root unless PORTAL_CONFIG points elsewhere.
CONFIG_PATH = os.getenv("PORTAL_CONFIG") or os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Where to store the SQLite database.
DB_PATH = _resolve_path(_CONFIG.get("db_path", "portal.db"))

# Session lifetime and account lockout.
_security = _CONFIG.get("security", {})
SESSION_TTL_HOURS = float(_security.get("session_ttl_hours", 2))
MAX_FAILED_ATTEMPTS = int(_security.get("max_failed_attempts", 5))
LOCKOUT_MINUTES = float(_security.get("lockout_minutes", 30))

# Login throttle per (email, address) pair.
_rate_limit = _CONFIG.get("rate_limit", {})
RATE_LIMIT_WINDOW_MINUTES = float(_rate_limit.get("window_minutes", 15))
RATE_LIMIT_MAX_ATTEMPTS = int(_rate_limit.get("max_attempts", 5))

# Title generation for ingested posts.
_ingest = _CONFIG.get("ingest", {})
DEFAULT_TITLE = _ingest.get("default_title", "Untitled")
TITLE_MAX_CHARS = int(_ingest.get("title_max_chars", 100))

# Pull sync: default channel and how far back to look.
_sync = _CONFIG.get("sync", {})
SYNC_CHANNEL = _sync.get("channel")
SYNC_LOOKBACK_HOURS = float(_sync.get("lookback_hours", 24))
SYNC_LIMIT = int(_sync.get("limit", 100))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
