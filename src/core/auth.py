"""Caller-facing admin authentication operations.

``AuthService`` wires the rate limiter, the credential verifier and the
session manager into login, logout, refresh and password change. All
collaborators are passed in explicitly so tests can swap any of them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from core.credentials import CredentialVerifier, hash_password, mask_email, validate_password_strength
from core.errors import (
    AccessDenied,
    AccountLocked,
    InvalidCredentials,
    PortalError,
    RateLimited,
    SessionExpiredOrInvalid,
    UpstreamFailure,
    ValidationError,
)
from core.models import Admin, AdminIdentity, LoginResult, utc_now
from core.ports import ActivityLog, AdminStore
from core.ratelimit import RateLimiter, login_key
from core.sessions import SessionManager

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientInfo:
    """Request metadata recorded with sessions and activity entries."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    def __init__(
        self,
        admins: AdminStore,
        activity: ActivityLog,
        verifier: CredentialVerifier,
        sessions: SessionManager,
        rate_limiter: RateLimiter,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._admins = admins
        self._activity = activity
        self._verifier = verifier
        self._sessions = sessions
        self._rate_limiter = rate_limiter
        self._clock = clock

    def _log_activity(self, admin_id: int, action: str, client: ClientInfo) -> None:
        try:
            self._activity.log_activity(admin_id, action, client.ip_address, client.user_agent)
        except PortalError:
            LOGGER.exception("Failed to record activity %s for admin id=%s", action, admin_id)

    def login(self, email: str, password: str, client: ClientInfo = ClientInfo()) -> LoginResult:
        """Authenticate and open a session.

        Gates run in order: rate limit, admin lookup, lock, IP allowlist,
        password. Unknown emails and wrong passwords fail identically.
        """

        if not email or not email.strip() or not password:
            raise ValidationError("Missing email or password")

        if not self._rate_limiter.allow(login_key(email, client.ip_address)):
            LOGGER.warning("Login rate limited for %s", mask_email(normalize_email(email)))
            raise RateLimited()

        admin = self._admins.get_admin_by_email(normalize_email(email))
        if admin is None:
            LOGGER.info("Login failed: unknown email %s", mask_email(normalize_email(email)))
            raise InvalidCredentials()

        try:
            self._verifier.ensure_not_locked(admin)
        except AccountLocked:
            self._log_activity(admin.id, "failed_login_locked", client)
            raise

        if admin.ip_allowlist and client.ip_address and client.ip_address not in admin.ip_allowlist:
            self._log_activity(admin.id, "failed_login_ip_blocked", client)
            LOGGER.warning("Login from non-allowlisted address for admin id=%s", admin.id)
            raise AccessDenied()

        if not self._verifier.verify(admin, password):
            self._log_activity(admin.id, "failed_login_invalid_password", client)
            LOGGER.info("Login failed: invalid password for admin id=%s", admin.id)
            raise InvalidCredentials()

        admin = self._verifier.upgrade_if_needed(admin, password)
        try:
            self._admins.record_login(admin.id, self._clock())
        except UpstreamFailure:
            LOGGER.exception("Failed to record last login for admin id=%s", admin.id)

        session = self._sessions.issue(admin, client.ip_address, client.user_agent)
        self._log_activity(admin.id, "successful_login", client)
        LOGGER.info("Login successful for %s", mask_email(admin.email))
        return LoginResult(session_token=session.token, expires_at=session.expires_at, admin=admin.identity)

    def logout(self, token: str, client: ClientInfo = ClientInfo()) -> None:
        """Revoke the session; unknown or expired tokens are not an error."""

        if not token:
            return
        identity: Optional[AdminIdentity]
        try:
            _, identity = self._sessions.lookup(token)
        except SessionExpiredOrInvalid:
            identity = None
        self._sessions.revoke(token)
        if identity is not None:
            self._log_activity(identity.id, "logout", client)

    def current_session(self, token: str) -> LoginResult:
        session, identity = self._sessions.lookup(token)
        return LoginResult(session_token=session.token, expires_at=session.expires_at, admin=identity)

    def validate(self, token: str) -> AdminIdentity:
        return self._sessions.validate(token)

    def refresh_session(self, token: str, client: ClientInfo = ClientInfo()) -> LoginResult:
        session, identity = self._sessions.refresh(token, client.ip_address, client.user_agent)
        self._log_activity(identity.id, "session_refreshed", client)
        return LoginResult(session_token=session.token, expires_at=session.expires_at, admin=identity)

    def change_password(
        self,
        token: str,
        current_password: str,
        new_password: str,
        client: ClientInfo = ClientInfo(),
    ) -> None:
        """Replace the caller's password and sign out every session they own."""

        if not current_password or not new_password:
            raise ValidationError("Missing current or new password")
        validate_password_strength(new_password)

        identity = self._sessions.validate(token)
        admin = self._admins.get_admin(identity.id)
        if admin is None:
            raise InvalidCredentials()

        if not self._verifier.verify(admin, current_password):
            self._log_activity(admin.id, "failed_password_change", client)
            raise InvalidCredentials("Current password is incorrect")

        self._admins.update_credential(admin.id, hash_password(new_password))
        self._sessions.revoke_all(admin.id)
        self._log_activity(admin.id, "password_changed", client)
        LOGGER.info("Password changed for %s", mask_email(admin.email))

    def create_admin(self, email: str, password: str, ip_allowlist: Iterable[str] = ()) -> Admin:
        """Bootstrap an admin account with a modern hash."""

        normalized = normalize_email(email)
        if "@" not in normalized:
            raise ValidationError("A valid email is required")
        validate_password_strength(password)
        if self._admins.get_admin_by_email(normalized) is not None:
            raise ValidationError("An admin with this email already exists")
        allowlist = [address.strip() for address in ip_allowlist if address.strip()]
        admin = self._admins.create_admin(normalized, hash_password(password), allowlist)
        LOGGER.info("Admin created: %s", mask_email(normalized))
        return admin
