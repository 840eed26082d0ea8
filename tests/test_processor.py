from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from core.errors import DuplicateSkipped
from core.models import Category, CategoryKind, Classification, NewPost, Post, RawMessage
from core.processor import SKIP_DUPLICATE, SKIP_EMPTY, IngestPipeline

DATE = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


class FakeStorage:
    """In-memory posts, categories and links."""

    def __init__(self, fail_on: Iterable[int] = (), race_on: Iterable[int] = ()) -> None:
        self.posts: dict[int, Post] = {}
        self.links: dict[int, Classification] = {}
        self.categories = {
            CategoryKind.SECTION: [
                Category(id=1, kind=CategoryKind.SECTION, name="Tutorials", hashtags=("tutorial",)),
                Category(id=2, kind=CategoryKind.SECTION, name="News", hashtags=("news",)),
            ],
            CategoryKind.MATERIAL_TYPE: [
                Category(id=10, kind=CategoryKind.MATERIAL_TYPE, name="Video", hashtags=("video",)),
                Category(id=11, kind=CategoryKind.MATERIAL_TYPE, name="Article", hashtags=("article",)),
            ],
        }
        self.fail_on = set(fail_on)
        self.race_on = set(race_on)

    def get_post(self, post_id: int) -> Optional[Post]:
        return self.posts.get(post_id)

    def find_post_by_source_id(self, source_message_id: int) -> Optional[Post]:
        for post in self.posts.values():
            if post.source_message_id == source_message_id:
                return post
        return None

    def insert_post(self, post: NewPost, classification: Classification = Classification()) -> Post:
        if post.source_message_id in self.fail_on:
            raise RuntimeError("disk full")
        if post.source_message_id in self.race_on:
            raise DuplicateSkipped()
        stored = Post(id=len(self.posts) + 1, **post.__dict__)
        self.posts[stored.id] = stored
        if not classification.is_empty():
            self.links[stored.id] = classification
        return stored

    def list_categories(self, kind: CategoryKind) -> list[Category]:
        return list(self.categories[kind])


def _pipeline(storage: FakeStorage) -> IngestPipeline:
    return IngestPipeline(posts=storage, categories=storage)


def _message(message_id: int, text, channel: Optional[str] = "@pychannel") -> RawMessage:
    return RawMessage(message_id=message_id, date=DATE, text=text, channel=channel)


def test_ingest_stores_and_classifies_post() -> None:
    storage = FakeStorage()
    result = _pipeline(storage).ingest(_message(42, "New lesson on decorators. Watch it #tutorial #video"))

    assert result.created
    post = storage.posts[result.post_id]
    assert post.title == "New lesson on decorators"
    assert post.hashtags == ("tutorial", "video")
    assert post.source_url == "https://t.me/pychannel/42"
    assert post.published_at == DATE
    assert storage.links[post.id] == Classification(
        section_ids=frozenset({1}), material_type_ids=frozenset({10})
    )


def test_ingest_is_idempotent_per_source_message() -> None:
    storage = FakeStorage()
    pipeline = _pipeline(storage)
    first = pipeline.ingest(_message(42, "Hello #news"))
    second = pipeline.ingest(_message(42, "Hello #news"))

    assert first.created
    assert not second.created
    assert second.reason == SKIP_DUPLICATE
    assert second.post_id == first.post_id
    assert len(storage.posts) == 1


def test_empty_messages_are_skipped() -> None:
    storage = FakeStorage()
    pipeline = _pipeline(storage)

    assert pipeline.ingest(_message(1, "   ")).reason == SKIP_EMPTY
    assert pipeline.ingest(_message(2, None)).reason == SKIP_EMPTY
    assert pipeline.ingest(_message(3, [{"type": "custom_emoji"}])).reason == SKIP_EMPTY
    assert not storage.posts


def test_unmatched_post_is_stored_without_links() -> None:
    storage = FakeStorage()
    result = _pipeline(storage).ingest(_message(5, "#misc", channel=None))

    post = storage.posts[result.post_id]
    assert post.title == "Untitled"
    assert post.source_url is None
    assert post.id not in storage.links


def test_fragment_text_and_chat_id_link() -> None:
    storage = FakeStorage()
    raw = RawMessage(
        message_id=7,
        date=DATE,
        text=["Read ", {"type": "bold", "text": "this"}, " #article"],
        chat_id=-1001234567890,
    )
    result = _pipeline(storage).ingest(raw)

    post = storage.posts[result.post_id]
    assert post.content == "Read this #article"
    assert post.source_url == "https://t.me/c/1234567890/7"
    assert storage.links[post.id].material_type_ids == frozenset({11})


def test_concurrent_duplicate_insert_is_a_skip() -> None:
    storage = FakeStorage(race_on={9})
    result = _pipeline(storage).ingest(_message(9, "Hello"))
    assert not result.created
    assert result.reason == SKIP_DUPLICATE


def test_batch_continues_after_a_failing_message() -> None:
    storage = FakeStorage(fail_on={2})
    messages = [_message(1, "One #news"), _message(2, "Two"), _message(3, "Three"), _message(1, "One #news")]

    report = _pipeline(storage).ingest_batch(messages)

    assert report.total == 4
    assert report.created == 2
    assert report.skipped == 1
    assert report.failed == 1
    assert sorted(post.source_message_id for post in storage.posts.values()) == [1, 3]
