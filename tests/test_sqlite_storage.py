from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from adapters.sqlite_storage import SQLiteStorage
from core.credentials import hash_password
from core.errors import UpstreamFailure
from core.models import Category, CategoryKind, Classification, NewPost, RawMessage
from core.processor import IngestPipeline

START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
WINDOW = timedelta(minutes=15)


def _storage(tmp_path) -> SQLiteStorage:
    storage = SQLiteStorage(str(tmp_path / "portal.db"))
    storage.init_db()
    return storage


def _new_post(message_id: int) -> NewPost:
    return NewPost(
        title="Lesson",
        content="Lesson #tutorial #video",
        hashtags=("tutorial", "video"),
        source_message_id=message_id,
        source_url=None,
        published_at=START,
    )


class SnapshotCategories:
    """Category list captured once and never refreshed."""

    def __init__(self, storage: SQLiteStorage) -> None:
        self._snapshot = {kind: storage.list_categories(kind) for kind in CategoryKind}

    def list_categories(self, kind: CategoryKind) -> list[Category]:
        return list(self._snapshot[kind])


def test_rate_limit_counters_survive_a_new_connection(tmp_path) -> None:
    first = _storage(tmp_path)
    for _ in range(5):
        first.hit("admin@example.com_10.0.0.1", START, WINDOW)

    second = SQLiteStorage(str(tmp_path / "portal.db"))
    entry = second.hit("admin@example.com_10.0.0.1", START + timedelta(minutes=1), WINDOW)

    assert entry.count == 6
    assert entry.window_start == START
    assert second.hit("admin@example.com_10.0.0.2", START, WINDOW).count == 1


def test_rate_limit_window_resets_after_it_elapses(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.hit("key", START, WINDOW)
    storage.hit("key", START, WINDOW)

    assert storage.hit("key", START + WINDOW, WINDOW).count == 3

    entry = storage.hit("key", START + WINDOW + timedelta(seconds=1), WINDOW)
    assert entry.count == 1
    assert entry.window_start == START + WINDOW + timedelta(seconds=1)


def test_purge_rate_limits_drops_elapsed_windows(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.hit("old", START, WINDOW)
    storage.hit("fresh", START + timedelta(minutes=10), WINDOW)

    assert storage.purge_rate_limits(START + timedelta(minutes=20), WINDOW) == 1
    assert storage.hit("old", START + timedelta(minutes=20), WINDOW).count == 1
    assert storage.hit("fresh", START + timedelta(minutes=20), WINDOW).count == 2


def test_register_failed_attempt_counts_and_locks(tmp_path) -> None:
    storage = _storage(tmp_path)
    admin = storage.create_admin("admin@example.com", hash_password("Correct-Horse-1!"))
    lock_until = START + timedelta(minutes=30)

    assert storage.register_failed_attempt(admin.id, START, 3, lock_until) == (1, None)
    assert storage.register_failed_attempt(admin.id, START, 3, lock_until) == (2, None)
    assert storage.register_failed_attempt(admin.id, START, 3, lock_until) == (3, lock_until)

    stored = storage.get_admin(admin.id)
    assert stored.failed_attempts == 3
    assert stored.locked_until == lock_until

    later = lock_until + timedelta(seconds=1)
    assert storage.register_failed_attempt(admin.id, later, 3, later + timedelta(minutes=30)) == (1, None)
    assert storage.get_admin(admin.id).locked_until is None


def test_register_failed_attempt_for_missing_admin(tmp_path) -> None:
    storage = _storage(tmp_path)
    assert storage.register_failed_attempt(99, START, 5, START) == (0, None)


def test_insert_post_stores_links_in_the_same_call(tmp_path) -> None:
    storage = _storage(tmp_path)
    section = storage.create_category(CategoryKind.SECTION, "Python", ("tutorial",))

    post = storage.insert_post(_new_post(1), Classification(section_ids=frozenset({section.id})))

    assert storage.get_post_links(post.id) == Classification(section_ids=frozenset({section.id}))


def test_failed_link_insert_leaves_no_post(tmp_path) -> None:
    storage = _storage(tmp_path)

    with pytest.raises(UpstreamFailure):
        storage.insert_post(_new_post(1), Classification(material_type_ids=frozenset({42})))

    assert storage.find_post_by_source_id(1) is None
    assert storage.list_posts() == []


def test_reingest_after_category_removal_creates_links(tmp_path) -> None:
    storage = _storage(tmp_path)
    section = storage.create_category(CategoryKind.SECTION, "Python", ("tutorial",))
    video = storage.create_category(CategoryKind.MATERIAL_TYPE, "Video", ("video",))
    stale = SnapshotCategories(storage)
    storage.delete_category(CategoryKind.MATERIAL_TYPE, video.id)
    raw = RawMessage(message_id=7, date=START, text="Lesson #tutorial #video", channel="@pychannel")

    with pytest.raises(UpstreamFailure):
        IngestPipeline(storage, stale).ingest(raw)
    assert storage.find_post_by_source_id(7) is None

    result = IngestPipeline(storage, storage).ingest(raw)

    assert result.created
    assert storage.get_post_links(result.post_id) == Classification(section_ids=frozenset({section.id}))
