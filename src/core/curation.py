"""Admin curation: manual classification and category management."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, Optional

from core.classifier import normalize_category_tags, suggest_classification
from core.errors import NotFound, ValidationError
from core.models import Category, CategoryKind, Classification, Post
from core.ports import CategoryStore, LinkStore, PostStore

LOGGER = logging.getLogger(__name__)


class CurationService:
    def __init__(self, posts: PostStore, categories: CategoryStore, links: LinkStore) -> None:
        self._posts = posts
        self._categories = categories
        self._links = links

    def _require_post(self, post_id: int) -> Post:
        post = self._posts.get_post(post_id)
        if post is None:
            raise NotFound(f"Post {post_id} not found")
        return post

    def _require_categories(self, kind: CategoryKind, ids: Iterable[int]) -> frozenset[int]:
        wanted = frozenset(ids)
        known = {category.id for category in self._categories.list_categories(kind)}
        missing = sorted(wanted - known)
        if missing:
            label = "Section" if kind is CategoryKind.SECTION else "Material type"
            raise NotFound(f"{label} not found: {', '.join(str(item) for item in missing)}")
        return wanted

    def classify_post(
        self,
        post_id: int,
        section_ids: Iterable[int],
        material_type_ids: Iterable[int],
    ) -> Classification:
        """Replace every link of the post with exactly the given ids.

        The store deletes all old links before inserting the new ones, so a
        failed save is retried by submitting the same classification again.
        """

        self._require_post(post_id)
        classification = Classification(
            section_ids=self._require_categories(CategoryKind.SECTION, section_ids),
            material_type_ids=self._require_categories(CategoryKind.MATERIAL_TYPE, material_type_ids),
        )
        self._links.replace_post_links(post_id, classification)
        LOGGER.info(
            "Classification saved for post %s: %s sections, %s material types",
            post_id,
            len(classification.section_ids),
            len(classification.material_type_ids),
        )
        return classification

    def links(self, post_id: int) -> Classification:
        self._require_post(post_id)
        return self._links.get_post_links(post_id)

    def suggest(self, post_id: int) -> Classification:
        """Defaults for the edit form: saved links, else hashtag matches."""

        post = self._require_post(post_id)
        return suggest_classification(
            post.hashtags,
            self._categories.list_categories(CategoryKind.SECTION),
            self._categories.list_categories(CategoryKind.MATERIAL_TYPE),
            self._links.get_post_links(post_id),
        )

    def list_categories(self, kind: CategoryKind) -> list[Category]:
        return self._categories.list_categories(kind)

    def create_category(self, kind: CategoryKind, name: str, hashtags: Iterable[str]) -> Category:
        clean_name = name.strip()
        if not clean_name:
            raise ValidationError("Name is required")
        category = self._categories.create_category(kind, clean_name, normalize_category_tags(hashtags))
        LOGGER.info("Created %s %r with %s hashtags", kind.value, category.name, len(category.hashtags))
        return category

    def update_category(
        self,
        kind: CategoryKind,
        category_id: int,
        name: Optional[str] = None,
        hashtags: Optional[Iterable[str]] = None,
    ) -> Category:
        """Rename or retag a category; existing post links are left untouched."""

        category = self._categories.get_category(kind, category_id)
        if category is None:
            raise NotFound(f"Category {category_id} not found")
        if name is not None:
            if not name.strip():
                raise ValidationError("Name is required")
            category = replace(category, name=name.strip())
        if hashtags is not None:
            category = replace(category, hashtags=normalize_category_tags(hashtags))
        self._categories.update_category(category)
        return category

    def delete_category(self, kind: CategoryKind, category_id: int) -> None:
        if not self._categories.delete_category(kind, category_id):
            raise NotFound(f"Category {category_id} not found")
        LOGGER.info("Deleted %s %s", kind.value, category_id)
