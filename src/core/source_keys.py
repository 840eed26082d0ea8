"""Helpers for working with Telegram channel references and post links."""

from __future__ import annotations

from typing import Optional, Union

PUBLIC_LINK = "https://t.me/{username}/{message_id}"
PRIVATE_LINK = "https://t.me/c/{channel_id}/{message_id}"


def normalize_channel_ref(raw_value: str) -> str:
    """Return ``@username`` (lowercased) or the numeric chat id as text."""

    value = raw_value.strip()
    if not value:
        raise ValueError("channel is required")
    for prefix in ("https://t.me/", "http://t.me/", "t.me/"):
        if value.lower().startswith(prefix):
            value = value[len(prefix):].strip("/")
            break
    if _is_int(value):
        return str(int(value))
    username = value[1:] if value.startswith("@") else value
    if not username or not username.replace("_", "a").isalnum():
        raise ValueError("channel must be @username or a numeric chat id")
    return f"@{username.lower()}"


def channel_id_from_chat_id(raw_chat_id: int) -> int:
    """Strip the ``-100`` peer prefix so the id fits a ``t.me/c/`` link."""

    if raw_chat_id < 0:
        raw_text = str(raw_chat_id)
        if raw_text.startswith("-100") and raw_text[4:].isdigit():
            # Channel/supergroup peer id: -100<channel_id>
            return int(raw_text[4:])
        return abs(raw_chat_id)
    return raw_chat_id


def build_post_url(channel: Optional[Union[str, int]], message_id: int) -> Optional[str]:
    """Return a t.me permalink; public usernames are preferred over ids."""

    if channel is None:
        return None
    if isinstance(channel, int):
        return PRIVATE_LINK.format(channel_id=channel_id_from_chat_id(channel), message_id=message_id)
    try:
        ref = normalize_channel_ref(channel)
    except ValueError:
        return None
    if ref.startswith("@"):
        return PUBLIC_LINK.format(username=ref[1:], message_id=message_id)
    return PRIVATE_LINK.format(channel_id=channel_id_from_chat_id(int(ref)), message_id=message_id)


def _is_int(value: str) -> bool:
    try:
        int(value)
    except ValueError:
        return False
    return True
