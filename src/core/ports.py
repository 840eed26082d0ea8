"""Ports (interfaces) used by the core services.

Ports define the minimal contracts for storage and feed adapters so that the
core can be reused with different backends. ``adapters.sqlite_storage``
implements every store port; tests substitute fakes per case.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional, Protocol

from core.models import (
    Admin,
    Category,
    CategoryKind,
    Classification,
    Credential,
    NewPost,
    Post,
    RateLimitEntry,
    RawMessage,
    Session,
)


class PostStore(Protocol):
    """Post persistence required by ingestion and curation."""

    def get_post(self, post_id: int) -> Optional[Post]:
        ...

    def find_post_by_source_id(self, source_message_id: int) -> Optional[Post]:
        ...

    def insert_post(self, post: NewPost, classification: Classification = Classification()) -> Post:
        """Insert a post and its links in one transaction.

        Raise ``DuplicateSkipped`` on a repeated source id. If the links cannot
        be written, nothing is stored and the message can be ingested again.
        """
        ...


class CategoryStore(Protocol):
    def list_categories(self, kind: CategoryKind) -> list[Category]:
        ...

    def get_category(self, kind: CategoryKind, category_id: int) -> Optional[Category]:
        ...

    def create_category(self, kind: CategoryKind, name: str, hashtags: Iterable[str]) -> Category:
        ...

    def update_category(self, category: Category) -> None:
        ...

    def delete_category(self, kind: CategoryKind, category_id: int) -> bool:
        ...


class LinkStore(Protocol):
    """Post <-> category associations for both taxonomies."""

    def get_post_links(self, post_id: int) -> Classification:
        ...

    def replace_post_links(self, post_id: int, classification: Classification) -> None:
        """Delete every existing link of the post, then insert the given ones."""
        ...


class AdminStore(Protocol):
    def get_admin(self, admin_id: int) -> Optional[Admin]:
        ...

    def get_admin_by_email(self, email: str) -> Optional[Admin]:
        ...

    def create_admin(self, email: str, credential: Credential, ip_allowlist: Iterable[str] = ()) -> Admin:
        ...

    def update_login_state(self, admin_id: int, failed_attempts: int, locked_until: Optional[datetime]) -> None:
        ...

    def register_failed_attempt(
        self,
        admin_id: int,
        now: datetime,
        max_attempts: int,
        lock_until: datetime,
    ) -> tuple[int, Optional[datetime]]:
        """Atomically count one failed login and return (attempts, locked_until).

        A lock that has already elapsed at ``now`` restarts the count at 1.
        Reaching ``max_attempts`` sets ``locked_until`` to ``lock_until``.
        """
        ...

    def update_credential(self, admin_id: int, credential: Credential) -> None:
        ...

    def record_login(self, admin_id: int, at: datetime) -> None:
        ...


class SessionStore(Protocol):
    def insert_session(self, session: Session) -> None:
        ...

    def get_session(self, token: str) -> Optional[Session]:
        ...

    def delete_session(self, token: str) -> bool:
        ...

    def replace_session(self, old_token: str, new_session: Session) -> bool:
        """Atomically swap tokens. Return False when ``old_token`` is gone."""
        ...

    def delete_sessions_for_admin(self, admin_id: int) -> int:
        ...

    def delete_expired_sessions(self, now: datetime) -> int:
        ...


class ActivityLog(Protocol):
    def log_activity(
        self,
        admin_id: int,
        action: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        ...


class RateLimitStore(Protocol):
    """Counter storage for the login rate limiter."""

    def hit(self, key: str, now: datetime, window: timedelta) -> RateLimitEntry:
        """Count one attempt atomically and return the updated entry.

        The window restarts (count 1, window_start ``now``) once more than
        ``window`` has elapsed since ``window_start``.
        """
        ...

    def purge_rate_limits(self, now: datetime, window: timedelta) -> int:
        """Drop counters whose window has elapsed; return how many went."""
        ...


class FeedPort(Protocol):
    """Pull access to recent channel messages."""

    async def fetch_recent(self, channel: str, from_date: datetime, limit: int) -> list[RawMessage]:
        ...
