"""Hashtag matching and classification logic (core domain)."""

from __future__ import annotations

from typing import Iterable, Sequence

from core.models import Category, Classification


def matches(post_tags: Iterable[str], category_tags: Iterable[str]) -> bool:
    """Return True if any category tag equals any post tag, ignoring case.

    Matching is exact after lowercasing both sides; "video" does not match
    "videos".
    """

    lowered = {tag.lower() for tag in post_tags}
    if not lowered:
        return False
    return any(tag.lower() in lowered for tag in category_tags)


def matching_ids(post_tags: Sequence[str], categories: Iterable[Category]) -> frozenset[int]:
    return frozenset(category.id for category in categories if matches(post_tags, category.hashtags))


def classify(
    post_tags: Sequence[str],
    sections: Iterable[Category],
    material_types: Iterable[Category],
) -> Classification:
    """Return the ids of every section and material type the tags match."""

    return Classification(
        section_ids=matching_ids(post_tags, sections),
        material_type_ids=matching_ids(post_tags, material_types),
    )


def suggest_classification(
    post_tags: Sequence[str],
    sections: Iterable[Category],
    material_types: Iterable[Category],
    existing: Classification,
) -> Classification:
    """Pre-fill for manual classification.

    Links an admin already saved always win; the hashtag match is only a
    hint for posts that have none.
    """

    if not existing.is_empty():
        return existing
    return classify(post_tags, sections, material_types)


def normalize_category_tags(raw_tags: Iterable[str]) -> tuple[str, ...]:
    """Clean admin-entered trigger hashtags.

    Leading ``#`` and surrounding whitespace are dropped, blanks are skipped,
    and case-insensitive duplicates keep their first spelling.
    """

    cleaned: list[str] = []
    seen: set[str] = set()
    for raw in raw_tags:
        tag = raw.strip().lstrip("#").strip()
        if not tag or tag.lower() in seen:
            continue
        seen.add(tag.lower())
        cleaned.append(tag)
    return tuple(cleaned)
