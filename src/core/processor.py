"""Core ingest pipeline.

This module is integration-agnostic. It only relies on ports for storage,
so the Telethon pull feed and the export-file import share one code path.

Per message the order is strict:
1) Extract plain text; skip empty messages
2) Message-level idempotency on the source message id
3) Hashtags, title and permalink
4) Classify against every section and material type
5) Persist the post together with its links in one transaction
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from core.classifier import classify
from core.config import IngestConfig
from core.errors import DuplicateSkipped
from core.models import BatchReport, Category, CategoryKind, IngestResult, NewPost, RawMessage
from core.ports import CategoryStore, PostStore
from core.source_keys import build_post_url
from core.text import extract_hashtags, extract_plain_text, generate_title

LOGGER = logging.getLogger(__name__)

SKIP_EMPTY = "empty"
SKIP_DUPLICATE = "duplicate"


class IngestPipeline:
    """Turns raw feed messages into stored, classified posts."""

    def __init__(
        self,
        posts: PostStore,
        categories: CategoryStore,
        config: IngestConfig = IngestConfig(),
    ) -> None:
        self._posts = posts
        self._categories = categories
        self._config = config

    def _load_categories(self) -> tuple[list[Category], list[Category]]:
        return (
            self._categories.list_categories(CategoryKind.SECTION),
            self._categories.list_categories(CategoryKind.MATERIAL_TYPE),
        )

    def ingest(
        self,
        raw: RawMessage,
        categories: Optional[tuple[list[Category], list[Category]]] = None,
    ) -> IngestResult:
        """Process one message. Empty and already-stored messages are skipped."""

        text = extract_plain_text(raw.text)
        if not text.strip():
            LOGGER.debug("Skipping message %s: no text content", raw.message_id)
            return IngestResult(created=False, reason=SKIP_EMPTY)

        existing = self._posts.find_post_by_source_id(raw.message_id)
        if existing is not None:
            LOGGER.debug("Skipping message %s: already stored as post %s", raw.message_id, existing.id)
            return IngestResult(created=False, post_id=existing.id, reason=SKIP_DUPLICATE)

        hashtags = extract_hashtags(text)
        channel = raw.channel if raw.channel else raw.chat_id
        new_post = NewPost(
            title=generate_title(text, self._config.default_title, self._config.title_max_chars),
            content=text,
            hashtags=hashtags,
            source_message_id=raw.message_id,
            source_url=build_post_url(channel, raw.message_id),
            published_at=raw.date,
        )
        sections, material_types = categories if categories is not None else self._load_categories()
        classification = classify(hashtags, sections, material_types)
        try:
            post = self._posts.insert_post(new_post, classification)
        except DuplicateSkipped:
            # Another ingest stored the same message between the check and the insert.
            LOGGER.info("Skipping message %s: stored concurrently", raw.message_id)
            return IngestResult(created=False, reason=SKIP_DUPLICATE)

        LOGGER.info(
            "Stored post %s from message %s: %s sections, %s material types",
            post.id,
            raw.message_id,
            len(classification.section_ids),
            len(classification.material_type_ids),
        )
        return IngestResult(created=True, post_id=post.id)

    def ingest_batch(self, messages: Iterable[RawMessage]) -> BatchReport:
        """Ingest messages in order; a failing message never stops the batch."""

        categories = self._load_categories()
        total = created = skipped = failed = 0
        for raw in messages:
            total += 1
            try:
                result = self.ingest(raw, categories)
            except Exception:
                failed += 1
                LOGGER.exception("Failed to ingest message %s", raw.message_id)
                continue
            if result.created:
                created += 1
            else:
                skipped += 1

        LOGGER.info(
            "Batch complete: total=%s, created=%s, skipped=%s, failed=%s",
            total,
            created,
            skipped,
            failed,
        )
        return BatchReport(total=total, created=created, skipped=skipped, failed=failed)
