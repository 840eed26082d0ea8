"""Admin session issuance, validation, refresh and revocation."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Callable, Optional

from core.config import SecurityConfig
from core.errors import SessionExpiredOrInvalid
from core.models import Admin, AdminIdentity, Session, utc_now
from core.ports import AdminStore, SessionStore

LOGGER = logging.getLogger(__name__)

TOKEN_BYTES = 32


def generate_session_token() -> str:
    """Opaque bearer token: 256 random bits as 64 hex chars."""

    return secrets.token_hex(TOKEN_BYTES)


class SessionManager:
    """Bearer sessions backed by a ``SessionStore``.

    Every session lasts ``config.session_ttl`` from issuance. Validation
    failures look the same whether the token is unknown or expired.
    """

    def __init__(
        self,
        sessions: SessionStore,
        admins: AdminStore,
        config: SecurityConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._sessions = sessions
        self._admins = admins
        self._config = config
        self._clock = clock

    def _new_session(
        self,
        admin_id: int,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> Session:
        now = self._clock()
        return Session(
            token=generate_session_token(),
            admin_id=admin_id,
            expires_at=now + self._config.session_ttl,
            created_at=now,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    def issue(self, admin: Admin, ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> Session:
        session = self._new_session(admin.id, ip_address, user_agent)
        self._sessions.insert_session(session)
        LOGGER.info("Session issued for admin id=%s", admin.id)
        return session

    def _live_session(self, token: str) -> Session:
        if not token:
            raise SessionExpiredOrInvalid()
        session = self._sessions.get_session(token)
        if session is None or session.token != token:
            raise SessionExpiredOrInvalid()
        if session.is_expired(self._clock()):
            self._sessions.delete_session(token)
            raise SessionExpiredOrInvalid()
        return session

    def lookup(self, token: str) -> tuple[Session, AdminIdentity]:
        """Return the live session and its owner, or raise."""

        session = self._live_session(token)
        admin = self._admins.get_admin(session.admin_id)
        if admin is None:
            # Owner was removed; the token is useless from now on.
            self._sessions.delete_session(token)
            raise SessionExpiredOrInvalid()
        return session, admin.identity

    def validate(self, token: str) -> AdminIdentity:
        _, identity = self.lookup(token)
        return identity

    def refresh(
        self,
        token: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> tuple[Session, AdminIdentity]:
        """Swap a live token for a new one with a fresh expiry."""

        session, identity = self.lookup(token)
        new_session = self._new_session(session.admin_id, ip_address, user_agent)
        if not self._sessions.replace_session(token, new_session):
            # Revoked between the lookup and the swap.
            raise SessionExpiredOrInvalid()
        LOGGER.info("Session refreshed for admin id=%s", session.admin_id)
        return new_session, identity

    def revoke(self, token: str) -> None:
        if token and self._sessions.delete_session(token):
            LOGGER.info("Session revoked")

    def revoke_all(self, admin_id: int) -> int:
        removed = self._sessions.delete_sessions_for_admin(admin_id)
        LOGGER.info("Revoked %s sessions for admin id=%s", removed, admin_id)
        return removed

    def purge_expired(self) -> int:
        return self._sessions.delete_expired_sessions(self._clock())
