"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to sqlite rows or Telethon types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Sequence, Union


def utc_now() -> datetime:
    """Timezone-aware current time; the default clock for every service."""

    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RawMessage:
    """A message as delivered by the external feed, before ingestion.

    ``text`` is either a flat string or a sequence of fragments (plain strings
    or mappings with a ``text`` key), matching Telegram export files.
    """

    message_id: int
    date: datetime
    text: Union[str, Sequence[Any], None]
    chat_id: Optional[int] = None
    channel: Optional[str] = None


@dataclass(frozen=True)
class Post:
    """A stored channel post."""

    id: int
    title: str
    content: str
    hashtags: tuple[str, ...]
    source_message_id: int
    source_url: Optional[str]
    published_at: datetime


@dataclass(frozen=True)
class NewPost:
    """Post fields known before the store assigns an id."""

    title: str
    content: str
    hashtags: tuple[str, ...]
    source_message_id: int
    source_url: Optional[str]
    published_at: datetime


class CategoryKind(str, Enum):
    SECTION = "section"
    MATERIAL_TYPE = "material_type"


@dataclass(frozen=True)
class Category:
    """A Section or a Material Type; both taxonomies share this shape."""

    id: int
    kind: CategoryKind
    name: str
    hashtags: tuple[str, ...]


@dataclass(frozen=True)
class LegacyCredential:
    """Unsalted SHA-256 hex digest. Accepted only until the next login."""

    hash: str


@dataclass(frozen=True)
class ModernCredential:
    """Salted adaptive hash in werkzeug's ``method$salt$hash`` format."""

    hash: str


Credential = Union[LegacyCredential, ModernCredential]


@dataclass(frozen=True)
class AdminIdentity:
    """Public identity of an admin; safe to hand back to callers."""

    id: int
    email: str


@dataclass(frozen=True)
class Admin:
    id: int
    email: str
    credential: Credential
    failed_attempts: int = 0
    locked_until: Optional[datetime] = None
    ip_allowlist: tuple[str, ...] = ()
    last_login_at: Optional[datetime] = None

    @property
    def identity(self) -> AdminIdentity:
        return AdminIdentity(id=self.id, email=self.email)

    def __repr__(self) -> str:
        # Keep the credential out of tracebacks and log lines.
        return f"Admin(id={self.id!r}, email={self.email!r})"


@dataclass(frozen=True)
class Session:
    token: str
    admin_id: int
    expires_at: datetime
    created_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def __repr__(self) -> str:
        return f"Session(admin_id={self.admin_id!r}, expires_at={self.expires_at!r})"


@dataclass
class RateLimitEntry:
    """Attempt counter for one rate-limit key."""

    count: int
    window_start: datetime


@dataclass(frozen=True)
class Classification:
    section_ids: frozenset[int] = field(default_factory=frozenset)
    material_type_ids: frozenset[int] = field(default_factory=frozenset)

    def is_empty(self) -> bool:
        return not self.section_ids and not self.material_type_ids


@dataclass(frozen=True)
class IngestResult:
    created: bool
    post_id: Optional[int] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class BatchReport:
    total: int
    created: int
    skipped: int
    failed: int


@dataclass(frozen=True)
class LoginResult:
    """Session payload returned by login, refresh and session lookups."""

    session_token: str
    expires_at: datetime
    admin: AdminIdentity

    def __repr__(self) -> str:
        return f"LoginResult(admin={self.admin!r}, expires_at={self.expires_at!r})"
