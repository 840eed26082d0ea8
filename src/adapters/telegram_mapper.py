"""Telegram-to-core message mapping adapter.

This keeps Telethon- and export-format details out of the core pipeline.
Both feed paths end up as ``RawMessage`` records.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from telethon.tl.custom import Message

from core.errors import ValidationError
from core.models import RawMessage

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExportFile:
    """Parsed Telegram Desktop "Export chat history" JSON file."""

    name: str
    chat_id: Optional[int]
    messages: list[RawMessage]
    rejected: int = 0


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_export_date(raw: Union[str, int, float]) -> datetime:
    """Export dates are local ISO strings without offset; unix seconds also accepted."""

    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw, tz=timezone.utc)
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return _ensure_utc(datetime.fromisoformat(text))


def channel_from_message(message: Message) -> Optional[str]:
    """Public ``@username`` of the message's chat, if it has one."""

    chat = getattr(message, "chat", None)
    username = getattr(chat, "username", None)
    if isinstance(username, str) and username:
        return f"@{username.lower()}"
    return None


def raw_message_from_telethon(message: Message) -> RawMessage:
    """Build a core RawMessage from a Telethon Message."""

    return RawMessage(
        message_id=message.id,
        date=_ensure_utc(message.date),
        text=message.raw_text or "",
        chat_id=message.chat_id,
        channel=channel_from_message(message),
    )


def raw_message_from_export(entry: dict[str, Any], chat_id: Optional[int]) -> RawMessage:
    # date is the exporter's local time; date_unixtime, when present, is exact.
    unixtime = entry.get("date_unixtime")
    date = parse_export_date(int(unixtime)) if unixtime else parse_export_date(entry["date"])
    return RawMessage(
        message_id=int(entry["id"]),
        date=date,
        text=entry.get("text", ""),
        chat_id=chat_id,
    )


def parse_export(data: Union[bytes, str]) -> ExportFile:
    """Parse an export file.

    Service messages (joins, pins) are dropped. Entries that cannot be read
    are counted in ``rejected`` instead of failing the whole file.
    """

    try:
        payload = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError("Export file is not valid JSON") from exc

    if not isinstance(payload, dict) or not isinstance(payload.get("messages"), list):
        raise ValidationError("Export file has no messages list")

    raw_chat_id = payload.get("id")
    try:
        chat_id = int(raw_chat_id) if raw_chat_id is not None else None
    except (TypeError, ValueError):
        chat_id = None

    messages: list[RawMessage] = []
    rejected = 0
    for entry in payload["messages"]:
        if isinstance(entry, dict) and entry.get("type", "message") != "message":
            continue
        try:
            messages.append(raw_message_from_export(entry, chat_id))
        except (AttributeError, KeyError, TypeError, ValueError):
            rejected += 1
            LOGGER.warning("Skipping unreadable export entry %r", entry.get("id") if isinstance(entry, dict) else None)

    return ExportFile(
        name=str(payload.get("name") or ""),
        chat_id=chat_id,
        messages=messages,
        rejected=rejected,
    )
