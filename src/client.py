"""Telegram client factory for channel-portal.

The client is only needed for the pull sync; the core and the import path
never touch Telethon.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
from telethon import TelegramClient

from core.errors import ValidationError

LOGGER = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "portal"


@dataclass(frozen=True)
class TelegramCredentials:
    api_id: int
    api_hash: str
    session_name: str

    def __repr__(self) -> str:
        return f"TelegramCredentials(api_id={self.api_id!r}, session_name={self.session_name!r})"


def load_credentials() -> TelegramCredentials:
    """Read API_ID, API_HASH and SESSION_NAME from the environment (.env honoured)."""

    load_dotenv()

    api_id = (os.getenv("API_ID") or "").strip()
    api_hash = (os.getenv("API_HASH") or "").strip()
    if not api_id or not api_hash:
        raise ValidationError("Missing API_ID or API_HASH in environment")
    if not api_id.isdigit():
        raise ValidationError("API_ID must be numeric")

    return TelegramCredentials(
        api_id=int(api_id),
        api_hash=api_hash,
        session_name=os.getenv("SESSION_NAME") or DEFAULT_SESSION_NAME,
    )


def build_client(credentials: Optional[TelegramCredentials] = None) -> TelegramClient:
    """Create a Telethon client; the session name doubles as the .session file path."""

    credentials = credentials or load_credentials()
    LOGGER.info("Initializing Telegram client (session %s)", credentials.session_name)
    return TelegramClient(credentials.session_name, credentials.api_id, credentials.api_hash)
