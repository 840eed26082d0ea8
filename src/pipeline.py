"""Feed entry points for the ingest pipeline.

Two paths deliver channel posts, and both end in ``IngestPipeline``:
1) ``sync_recent_posts`` pulls recent history from the live channel
2) ``import_history`` reads a Telegram Desktop export file

Each message is idempotent on its source message id, so either path can be
re-run over the same range safely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from adapters.telegram_mapper import parse_export
from core.errors import ValidationError
from core.models import utc_now
from core.ports import FeedPort
from core.processor import IngestPipeline
from core.source_keys import normalize_channel_ref

LOGGER = logging.getLogger(__name__)

DEFAULT_SYNC_LOOKBACK = timedelta(hours=24)
DEFAULT_SYNC_LIMIT = 100


@dataclass(frozen=True)
class SyncReport:
    processed: int
    total_found: int


@dataclass(frozen=True)
class ImportReport:
    processed: int
    skipped: int
    total: int
    channel_name: str


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def sync_recent_posts(
    feed: FeedPort,
    pipeline: IngestPipeline,
    channel: str,
    from_date: Optional[datetime] = None,
    limit: int = DEFAULT_SYNC_LIMIT,
) -> SyncReport:
    """Pull messages newer than ``from_date`` (default: last 24 hours)."""

    try:
        channel_ref = normalize_channel_ref(channel)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    since = _as_utc(from_date) if from_date is not None else utc_now() - DEFAULT_SYNC_LOOKBACK
    LOGGER.info("Syncing %s from %s", channel_ref, since.isoformat())

    messages = await feed.fetch_recent(channel_ref, since, limit)
    report = pipeline.ingest_batch(messages)

    LOGGER.info("Sync completed: processed=%s, found=%s", report.created, report.total)
    return SyncReport(processed=report.created, total_found=report.total)


def import_history(pipeline: IngestPipeline, data: Union[bytes, str]) -> ImportReport:
    """Ingest every message of an exported chat history file."""

    export = parse_export(data)
    LOGGER.info("Importing %s messages from %r", len(export.messages), export.name)

    report = pipeline.ingest_batch(export.messages)
    skipped = report.skipped + report.failed + export.rejected

    LOGGER.info("Import completed: processed=%s, skipped=%s", report.created, skipped)
    return ImportReport(
        processed=report.created,
        skipped=skipped,
        total=report.total + export.rejected,
        channel_name=export.name,
    )
