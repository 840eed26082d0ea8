from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from adapters.sqlite_storage import SQLiteStorage
from core.errors import ValidationError
from core.models import CategoryKind, RawMessage
from core.processor import IngestPipeline
from pipeline import import_history, sync_recent_posts

EXPORT = {
    "name": "Py Channel",
    "type": "public_channel",
    "id": 1234567890,
    "messages": [
        {"id": 1, "type": "service", "date": "2024-01-01T10:00:00", "action": "pin_message"},
        {
            "id": 2,
            "type": "message",
            "date": "2024-01-01T10:05:00",
            "date_unixtime": "1704103500",
            "text": ["Intro to ", {"type": "bold", "text": "asyncio"}, " #tutorial"],
        },
        {"id": 3, "type": "message", "date": "2024-01-01T11:00:00", "text": ""},
        {"id": 4, "type": "message", "text": "no date"},
    ],
}


class FakeFeed:
    def __init__(self, messages: list[RawMessage]) -> None:
        self.messages = messages
        self.calls: list[tuple[str, datetime, int]] = []

    async def fetch_recent(self, channel: str, from_date: datetime, limit: int) -> list[RawMessage]:
        self.calls.append((channel, from_date, limit))
        return list(self.messages)


def _pipeline(tmp_path):
    storage = SQLiteStorage(str(tmp_path / "portal.db"))
    storage.init_db()
    storage.create_category(CategoryKind.SECTION, "Python", ("tutorial",))
    return IngestPipeline(storage, storage), storage


def test_import_history_counts_processed_and_skipped(tmp_path) -> None:
    pipeline, storage = _pipeline(tmp_path)

    report = import_history(pipeline, json.dumps(EXPORT).encode("utf-8"))

    assert report.processed == 1
    assert report.skipped == 2
    assert report.total == 3
    assert report.channel_name == "Py Channel"

    post = storage.find_post_by_source_id(2)
    assert post.title == "Intro to asyncio"
    assert post.source_url == "https://t.me/c/1234567890/2"
    assert post.published_at == datetime(2024, 1, 1, 10, 5, tzinfo=timezone.utc)
    assert len(storage.get_post_links(post.id).section_ids) == 1


def test_import_history_twice_creates_nothing_new(tmp_path) -> None:
    pipeline, storage = _pipeline(tmp_path)
    data = json.dumps(EXPORT)

    import_history(pipeline, data)
    report = import_history(pipeline, data)

    assert report.processed == 0
    assert report.skipped == 3
    assert len(storage.list_posts()) == 1


@pytest.mark.parametrize("data", [b"not json", b'{"name": "x"}', b"[]"])
def test_import_history_rejects_malformed_files(tmp_path, data: bytes) -> None:
    pipeline, _ = _pipeline(tmp_path)
    with pytest.raises(ValidationError):
        import_history(pipeline, data)


def test_sync_recent_posts_ingests_feed_messages(tmp_path) -> None:
    pipeline, storage = _pipeline(tmp_path)
    now = datetime.now(timezone.utc)
    feed = FakeFeed(
        [
            RawMessage(message_id=10, date=now, text="Fresh #tutorial", channel="@pychannel"),
            RawMessage(message_id=11, date=now, text="", channel="@pychannel"),
        ]
    )

    report = asyncio.run(sync_recent_posts(feed, pipeline, "https://t.me/PyChannel", limit=50))

    assert report.processed == 1
    assert report.total_found == 2
    channel, from_date, limit = feed.calls[0]
    assert channel == "@pychannel"
    assert limit == 50
    assert now - timedelta(hours=24, minutes=1) < from_date <= now - timedelta(hours=23, minutes=59)
    assert storage.find_post_by_source_id(10).source_url == "https://t.me/pychannel/10"


def test_sync_recent_posts_passes_explicit_start(tmp_path) -> None:
    pipeline, _ = _pipeline(tmp_path)
    feed = FakeFeed([])
    start = datetime(2024, 1, 1)

    report = asyncio.run(sync_recent_posts(feed, pipeline, "@pychannel", from_date=start))

    assert report.processed == 0
    assert report.total_found == 0
    assert feed.calls[0][1] == start.replace(tzinfo=timezone.utc)


def test_sync_recent_posts_rejects_bad_channel(tmp_path) -> None:
    pipeline, _ = _pipeline(tmp_path)
    with pytest.raises(ValidationError):
        asyncio.run(sync_recent_posts(FakeFeed([]), pipeline, "not a channel!"))
