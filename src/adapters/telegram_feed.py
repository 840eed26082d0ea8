"""Telethon pull feed.

Reads recent channel history through a logged-in Telethon client and hands
back core ``RawMessage`` records, oldest first.
"""

from __future__ import annotations

import logging
from datetime import datetime

from telethon import errors

from adapters.telegram_mapper import raw_message_from_telethon
from core.errors import UpstreamFailure
from core.models import RawMessage

LOGGER = logging.getLogger(__name__)


class TelethonFeed:
    """FeedPort implementation backed by ``client.iter_messages``."""

    def __init__(self, client) -> None:
        self._client = client

    async def _resolve(self, channel: str):
        target = int(channel) if channel.lstrip("-").isdigit() else channel
        try:
            return await self._client.get_entity(target)
        except (ValueError, errors.RPCError) as exc:
            raise UpstreamFailure(f"Cannot access channel {channel}: {exc}") from exc

    async def fetch_recent(self, channel: str, from_date: datetime, limit: int) -> list[RawMessage]:
        entity = await self._resolve(channel)

        messages: list[RawMessage] = []
        try:
            # iter_messages walks newest to oldest, so stop at the first old one.
            async for message in self._client.iter_messages(entity, limit=limit):
                if message.date < from_date:
                    break
                messages.append(raw_message_from_telethon(message))
        except errors.RPCError as exc:
            raise UpstreamFailure(f"Failed to read history of {channel}: {exc}") from exc

        messages.reverse()
        LOGGER.info("Fetched %s messages from %s since %s", len(messages), channel, from_date.isoformat())
        return messages
