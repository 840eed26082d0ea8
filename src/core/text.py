"""Text helpers for ingestion: plain text, hashtags and titles."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Sequence, Union

from core.config import DEFAULT_TITLE, TITLE_MAX_CHARS

# Latin and Cyrillic letters, digits and underscore.
HASHTAG_CHARS = "A-Za-z0-9_А-Яа-яЁё"
HASHTAG_PATTERN = re.compile(rf"#([{HASHTAG_CHARS}]+)")
URL_PATTERN = re.compile(r"(?:https?://|www\.|t\.me/)\S+", re.IGNORECASE)
SENTENCE_END = re.compile(r"[.!?…]")


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def extract_plain_text(text: Union[str, Sequence[Any], None]) -> str:
    """Flatten a message body into plain text.

    Telegram exports store formatted messages as a list of fragments, each a
    plain string or a mapping with a ``text`` key; fragment texts are joined
    in order.
    """

    if text is None:
        return ""
    if isinstance(text, str):
        return text

    parts: list[str] = []
    for fragment in text:
        if isinstance(fragment, str):
            parts.append(fragment)
        elif isinstance(fragment, Mapping):
            value = fragment.get("text")
            if isinstance(value, str):
                parts.append(value)
    return "".join(parts)


def extract_hashtags(text: str) -> tuple[str, ...]:
    """Return hashtags without ``#``, case preserved, first occurrence wins.

    Links are removed first so a URL fragment (``page#intro``) is not a tag.
    """

    seen: dict[str, None] = {}
    for match in HASHTAG_PATTERN.finditer(URL_PATTERN.sub(" ", text)):
        seen.setdefault(match.group(1), None)
    return tuple(seen)


def generate_title(
    text: str,
    default: str = DEFAULT_TITLE,
    max_chars: int = TITLE_MAX_CHARS,
) -> str:
    """Derive a short title from free text.

    Hashtags and links are removed first, then the first non-empty line is
    cut before its first sentence-ending mark and capped at ``max_chars``.
    """

    cleaned = HASHTAG_PATTERN.sub(" ", text)
    cleaned = URL_PATTERN.sub(" ", cleaned)

    first_line = ""
    for line in cleaned.splitlines():
        line = _collapse_whitespace(line)
        if line:
            first_line = line
            break

    sentence = SENTENCE_END.split(first_line, maxsplit=1)[0]
    title = sentence[:max_chars].strip()
    return title or default
