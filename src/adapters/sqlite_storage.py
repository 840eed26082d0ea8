"""SQLite storage adapter.

Implements every core store port (posts, categories, links, admins,
sessions, activity log, login rate limits) using a single SQLite database.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterable, Iterator, Optional

from core.errors import DuplicateSkipped, UpstreamFailure, ValidationError
from core.models import (
    Admin,
    Category,
    CategoryKind,
    Classification,
    Credential,
    LegacyCredential,
    ModernCredential,
    NewPost,
    Post,
    RateLimitEntry,
    Session,
    utc_now,
)

# kind -> (category table, link table, link column)
_CATEGORY_TABLES = {
    CategoryKind.SECTION: ("sections", "post_sections", "section_id"),
    CategoryKind.MATERIAL_TYPE: ("material_types", "post_material_types", "material_type_id"),
}

SCHEME_LEGACY = "legacy"
SCHEME_MODERN = "modern"


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_post(row: sqlite3.Row) -> Post:
    return Post(
        id=int(row["id"]),
        title=row["title"],
        content=row["content"],
        hashtags=tuple(json.loads(row["hashtags"] or "[]")),
        source_message_id=int(row["source_message_id"]),
        source_url=row["source_url"],
        published_at=datetime.fromisoformat(row["published_at"]),
    )


def _row_to_admin(row: sqlite3.Row) -> Admin:
    credential: Credential
    if row["password_scheme"] == SCHEME_LEGACY:
        credential = LegacyCredential(hash=row["password_hash"])
    else:
        credential = ModernCredential(hash=row["password_hash"])
    return Admin(
        id=int(row["id"]),
        email=row["email"],
        credential=credential,
        failed_attempts=int(row["failed_login_attempts"] or 0),
        locked_until=_parse_dt(row["locked_until"]),
        ip_allowlist=tuple(json.loads(row["ip_allowlist"] or "[]")),
        last_login_at=_parse_dt(row["last_login_at"]),
    )


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        token=row["session_token"],
        admin_id=int(row["admin_id"]),
        expires_at=datetime.fromisoformat(row["expires_at"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
    )


def _credential_columns(credential: Credential) -> tuple[str, str]:
    if isinstance(credential, LegacyCredential):
        return SCHEME_LEGACY, credential.hash
    return SCHEME_MODERN, credential.hash


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the core store ports."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on error; surface driver errors as UpstreamFailure."""

        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise UpstreamFailure(f"Database unavailable: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as exc:
            raise UpstreamFailure(f"Database error: {exc}") from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - posts: ingested channel posts, unique per source message id
        - sections / material_types: the two category taxonomies
        - post_sections / post_material_types: classification links
        - admins: accounts, credential scheme and lockout state
        - admin_sessions: bearer tokens with expiry
        - admin_activity_log: append-only audit of auth events
        - login_rate_limits: per (email, origin) attempt counters
        """

        with self._transaction() as conn:
            # hashtags is a JSON array in first-seen order, case preserved.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS posts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    hashtags TEXT NOT NULL DEFAULT '[]',
                    source_message_id INTEGER NOT NULL UNIQUE,
                    source_url TEXT,
                    published_at TIMESTAMP NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
            for kind, (table, link_table, link_column) in _CATEGORY_TABLES.items():
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL UNIQUE,
                        hashtags TEXT NOT NULL DEFAULT '[]'
                    )
                    """
                )
                # Links carry no identity of their own; the pair is the key.
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {link_table} (
                        post_id INTEGER NOT NULL REFERENCES posts(id) ON DELETE CASCADE,
                        {link_column} INTEGER NOT NULL REFERENCES {table}(id) ON DELETE CASCADE,
                        PRIMARY KEY (post_id, {link_column})
                    )
                    """
                )
            # password_scheme tags password_hash as 'legacy' (sha256 hex) or 'modern' (werkzeug).
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS admins (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    password_scheme TEXT NOT NULL DEFAULT 'modern',
                    failed_login_attempts INTEGER NOT NULL DEFAULT 0,
                    locked_until TIMESTAMP,
                    ip_allowlist TEXT NOT NULL DEFAULT '[]',
                    last_login_at TIMESTAMP,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS admin_sessions (
                    session_token TEXT PRIMARY KEY,
                    admin_id INTEGER NOT NULL REFERENCES admins(id) ON DELETE CASCADE,
                    expires_at TIMESTAMP NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    ip_address TEXT,
                    user_agent TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS admin_activity_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    admin_id INTEGER,
                    action TEXT NOT NULL,
                    ip_address TEXT,
                    user_agent TEXT,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
            # window_start is unix seconds so the window test stays in SQL.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS login_rate_limits (
                    rate_key TEXT PRIMARY KEY,
                    attempts INTEGER NOT NULL,
                    window_start REAL NOT NULL
                )
                """
            )

    # --- posts ---

    def get_post(self, post_id: int) -> Optional[Post]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM posts WHERE id = ?", (post_id,)).fetchone()
        return _row_to_post(row) if row else None

    def find_post_by_source_id(self, source_message_id: int) -> Optional[Post]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM posts WHERE source_message_id = ?",
                (source_message_id,),
            ).fetchone()
        return _row_to_post(row) if row else None

    def insert_post(self, post: NewPost, classification: Classification = Classification()) -> Post:
        """Insert the post and its links atomically.

        A repeated source id raises ``DuplicateSkipped``. A link to a missing
        category rolls the post back too and raises ``UpstreamFailure``.
        """

        try:
            with self._transaction() as conn:
                try:
                    cur = conn.execute(
                        """
                        INSERT INTO posts (
                            title,
                            content,
                            hashtags,
                            source_message_id,
                            source_url,
                            published_at,
                            created_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            post.title,
                            post.content,
                            json.dumps(list(post.hashtags), ensure_ascii=False),
                            post.source_message_id,
                            post.source_url,
                            post.published_at.isoformat(),
                            utc_now().isoformat(),
                        ),
                    )
                except sqlite3.IntegrityError as exc:
                    raise DuplicateSkipped(f"Message {post.source_message_id} already stored") from exc
                post_id = int(cur.lastrowid)
                self._insert_links(conn, post_id, classification)
        except sqlite3.IntegrityError as exc:
            raise UpstreamFailure(f"Could not save links for message {post.source_message_id}: {exc}") from exc
        return Post(
            id=post_id,
            title=post.title,
            content=post.content,
            hashtags=post.hashtags,
            source_message_id=post.source_message_id,
            source_url=post.source_url,
            published_at=post.published_at,
        )

    def list_posts(self, limit: int = 50) -> list[Post]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM posts ORDER BY published_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [_row_to_post(row) for row in rows]

    # --- categories ---

    def list_categories(self, kind: CategoryKind) -> list[Category]:
        table = _CATEGORY_TABLES[kind][0]
        with self._transaction() as conn:
            rows = conn.execute(f"SELECT id, name, hashtags FROM {table} ORDER BY name").fetchall()
        return [
            Category(id=int(row["id"]), kind=kind, name=row["name"], hashtags=tuple(json.loads(row["hashtags"])))
            for row in rows
        ]

    def get_category(self, kind: CategoryKind, category_id: int) -> Optional[Category]:
        table = _CATEGORY_TABLES[kind][0]
        with self._transaction() as conn:
            row = conn.execute(f"SELECT id, name, hashtags FROM {table} WHERE id = ?", (category_id,)).fetchone()
        if row is None:
            return None
        return Category(id=int(row["id"]), kind=kind, name=row["name"], hashtags=tuple(json.loads(row["hashtags"])))

    def create_category(self, kind: CategoryKind, name: str, hashtags: Iterable[str]) -> Category:
        table = _CATEGORY_TABLES[kind][0]
        tags = tuple(hashtags)
        try:
            with self._transaction() as conn:
                cur = conn.execute(
                    f"INSERT INTO {table} (name, hashtags) VALUES (?, ?)",
                    (name, json.dumps(list(tags), ensure_ascii=False)),
                )
                category_id = int(cur.lastrowid)
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"A {kind.value.replace('_', ' ')} named {name!r} already exists") from exc
        return Category(id=category_id, kind=kind, name=name, hashtags=tags)

    def update_category(self, category: Category) -> None:
        table = _CATEGORY_TABLES[category.kind][0]
        try:
            with self._transaction() as conn:
                conn.execute(
                    f"UPDATE {table} SET name = ?, hashtags = ? WHERE id = ?",
                    (category.name, json.dumps(list(category.hashtags), ensure_ascii=False), category.id),
                )
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"Name {category.name!r} is already taken") from exc

    def delete_category(self, kind: CategoryKind, category_id: int) -> bool:
        table = _CATEGORY_TABLES[kind][0]
        with self._transaction() as conn:
            cur = conn.execute(f"DELETE FROM {table} WHERE id = ?", (category_id,))
            return cur.rowcount == 1

    # --- classification links ---

    def get_post_links(self, post_id: int) -> Classification:
        ids: dict[CategoryKind, frozenset[int]] = {}
        with self._transaction() as conn:
            for kind, (_, link_table, link_column) in _CATEGORY_TABLES.items():
                rows = conn.execute(
                    f"SELECT {link_column} FROM {link_table} WHERE post_id = ?",
                    (post_id,),
                ).fetchall()
                ids[kind] = frozenset(int(row[link_column]) for row in rows)
        return Classification(
            section_ids=ids[CategoryKind.SECTION],
            material_type_ids=ids[CategoryKind.MATERIAL_TYPE],
        )

    @staticmethod
    def _insert_links(conn: sqlite3.Connection, post_id: int, classification: Classification) -> None:
        wanted = {
            CategoryKind.SECTION: classification.section_ids,
            CategoryKind.MATERIAL_TYPE: classification.material_type_ids,
        }
        for kind, (_, link_table, link_column) in _CATEGORY_TABLES.items():
            conn.executemany(
                f"INSERT INTO {link_table} (post_id, {link_column}) VALUES (?, ?)",
                [(post_id, category_id) for category_id in sorted(wanted[kind])],
            )

    def replace_post_links(self, post_id: int, classification: Classification) -> None:
        """Delete-then-insert both link tables in one transaction."""

        try:
            with self._transaction() as conn:
                for _, link_table, _ in _CATEGORY_TABLES.values():
                    conn.execute(f"DELETE FROM {link_table} WHERE post_id = ?", (post_id,))
                self._insert_links(conn, post_id, classification)
        except sqlite3.IntegrityError as exc:
            raise UpstreamFailure(f"Could not save links for post {post_id}: {exc}") from exc

    # --- admins ---

    def get_admin(self, admin_id: int) -> Optional[Admin]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM admins WHERE id = ?", (admin_id,)).fetchone()
        return _row_to_admin(row) if row else None

    def get_admin_by_email(self, email: str) -> Optional[Admin]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM admins WHERE email = ?",
                (email.strip().lower(),),
            ).fetchone()
        return _row_to_admin(row) if row else None

    def create_admin(self, email: str, credential: Credential, ip_allowlist: Iterable[str] = ()) -> Admin:
        scheme, password_hash = _credential_columns(credential)
        allowlist = tuple(ip_allowlist)
        normalized = email.strip().lower()
        try:
            with self._transaction() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO admins (email, password_hash, password_scheme, ip_allowlist, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (normalized, password_hash, scheme, json.dumps(list(allowlist)), utc_now().isoformat()),
                )
                admin_id = int(cur.lastrowid)
        except sqlite3.IntegrityError as exc:
            raise ValidationError("An admin with this email already exists") from exc
        return Admin(id=admin_id, email=normalized, credential=credential, ip_allowlist=allowlist)

    def update_login_state(self, admin_id: int, failed_attempts: int, locked_until: Optional[datetime]) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE admins SET failed_login_attempts = ?, locked_until = ? WHERE id = ?",
                (failed_attempts, _dt(locked_until), admin_id),
            )

    def register_failed_attempt(
        self,
        admin_id: int,
        now: datetime,
        max_attempts: int,
        lock_until: datetime,
    ) -> tuple[int, Optional[datetime]]:
        with self._transaction() as conn:
            # Take the write lock before reading so concurrent failures serialize.
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT failed_login_attempts, locked_until FROM admins WHERE id = ?",
                (admin_id,),
            ).fetchone()
            if row is None:
                return 0, None
            previous_lock = _parse_dt(row["locked_until"])
            attempts = int(row["failed_login_attempts"] or 0)
            if previous_lock is not None and previous_lock <= now:
                attempts = 0
            attempts += 1
            locked_until = lock_until if attempts >= max_attempts else None
            conn.execute(
                "UPDATE admins SET failed_login_attempts = ?, locked_until = ? WHERE id = ?",
                (attempts, _dt(locked_until), admin_id),
            )
        return attempts, locked_until

    def update_credential(self, admin_id: int, credential: Credential) -> None:
        scheme, password_hash = _credential_columns(credential)
        with self._transaction() as conn:
            conn.execute(
                "UPDATE admins SET password_hash = ?, password_scheme = ? WHERE id = ?",
                (password_hash, scheme, admin_id),
            )

    def record_login(self, admin_id: int, at: datetime) -> None:
        with self._transaction() as conn:
            conn.execute("UPDATE admins SET last_login_at = ? WHERE id = ?", (at.isoformat(), admin_id))

    # --- sessions ---

    def insert_session(self, session: Session) -> None:
        try:
            with self._transaction() as conn:
                self._insert_session(conn, session)
        except sqlite3.IntegrityError as exc:
            raise UpstreamFailure("Session could not be stored") from exc

    @staticmethod
    def _insert_session(conn: sqlite3.Connection, session: Session) -> None:
        conn.execute(
            """
            INSERT INTO admin_sessions (
                session_token,
                admin_id,
                expires_at,
                created_at,
                ip_address,
                user_agent
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                session.token,
                session.admin_id,
                session.expires_at.isoformat(),
                session.created_at.isoformat(),
                session.ip_address,
                session.user_agent,
            ),
        )

    def get_session(self, token: str) -> Optional[Session]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM admin_sessions WHERE session_token = ?", (token,)).fetchone()
        return _row_to_session(row) if row else None

    def delete_session(self, token: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM admin_sessions WHERE session_token = ?", (token,))
            return cur.rowcount == 1

    def replace_session(self, old_token: str, new_session: Session) -> bool:
        try:
            with self._transaction() as conn:
                cur = conn.execute("DELETE FROM admin_sessions WHERE session_token = ?", (old_token,))
                if cur.rowcount != 1:
                    return False
                self._insert_session(conn, new_session)
        except sqlite3.IntegrityError as exc:
            raise UpstreamFailure("Session could not be stored") from exc
        return True

    def delete_sessions_for_admin(self, admin_id: int) -> int:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM admin_sessions WHERE admin_id = ?", (admin_id,))
            return cur.rowcount

    def delete_expired_sessions(self, now: datetime) -> int:
        """Remove sessions with ``expires_at <= now``; return how many went."""

        with self._transaction() as conn:
            rows = conn.execute("SELECT session_token, expires_at FROM admin_sessions").fetchall()
            expired = [
                (row["session_token"],) for row in rows if datetime.fromisoformat(row["expires_at"]) <= now
            ]
            conn.executemany("DELETE FROM admin_sessions WHERE session_token = ?", expired)
        return len(expired)

    # --- activity log ---

    def log_activity(
        self,
        admin_id: int,
        action: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO admin_activity_log (admin_id, action, ip_address, user_agent, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (admin_id, action, ip_address, user_agent, utc_now().isoformat()),
            )

    def list_activity(self, admin_id: int) -> list[tuple[str, Optional[str]]]:
        """Return (action, ip_address) pairs for an admin, oldest first."""

        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT action, ip_address FROM admin_activity_log WHERE admin_id = ? ORDER BY id",
                (admin_id,),
            ).fetchall()
        return [(row["action"], row["ip_address"]) for row in rows]

    # --- login rate limits ---

    def hit(self, key: str, now: datetime, window: timedelta) -> RateLimitEntry:
        """Count one attempt with a single upsert; the window test runs in SQL."""

        window_seconds = window.total_seconds()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO login_rate_limits (rate_key, attempts, window_start)
                VALUES (?, 1, ?)
                ON CONFLICT(rate_key) DO UPDATE SET
                    attempts = CASE
                        WHEN excluded.window_start - window_start > ? THEN 1
                        ELSE attempts + 1
                    END,
                    window_start = CASE
                        WHEN excluded.window_start - window_start > ? THEN excluded.window_start
                        ELSE window_start
                    END
                """,
                (key, now.timestamp(), window_seconds, window_seconds),
            )
            row = conn.execute(
                "SELECT attempts, window_start FROM login_rate_limits WHERE rate_key = ?",
                (key,),
            ).fetchone()
        return RateLimitEntry(
            count=int(row["attempts"]),
            window_start=datetime.fromtimestamp(row["window_start"], tz=timezone.utc),
        )

    def purge_rate_limits(self, now: datetime, window: timedelta) -> int:
        with self._transaction() as conn:
            cur = conn.execute(
                "DELETE FROM login_rate_limits WHERE ? - window_start > ?",
                (now.timestamp(), window.total_seconds()),
            )
            return cur.rowcount
