"""Password hashing, verification and account lockout.

Two hash schemes coexist while old accounts migrate:

- ``ModernCredential``: werkzeug's salted adaptive hash (preferred).
- ``LegacyCredential``: bare SHA-256 hex digest, accepted once more and then
  replaced by a modern hash on the same successful login.

Nothing in this module logs or returns a raw password or a hash.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from dataclasses import replace
from datetime import datetime
from typing import Callable

from werkzeug.security import check_password_hash, generate_password_hash

from core.config import SecurityConfig
from core.errors import AccountLocked, UpstreamFailure, ValidationError
from core.models import Admin, Credential, LegacyCredential, ModernCredential, utc_now
from core.ports import AdminStore

LOGGER = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 12
PASSWORD_SYMBOLS = '!@#$%^&*(),.?":{}|<>'
_PASSWORD_CLASSES = (
    re.compile(r"[a-z]"),
    re.compile(r"[A-Z]"),
    re.compile(r"\d"),
    re.compile("[" + re.escape(PASSWORD_SYMBOLS) + "]"),
)


def hash_password(password: str) -> ModernCredential:
    return ModernCredential(hash=generate_password_hash(password))


def legacy_hash(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def check_credential(credential: Credential, password: str) -> bool:
    """Compare a password against either scheme in constant time."""

    if isinstance(credential, ModernCredential):
        try:
            return check_password_hash(credential.hash, password)
        except ValueError:
            # Unknown hash method in the stored value.
            LOGGER.error("Stored credential has an unsupported format")
            return False
    if isinstance(credential, LegacyCredential):
        return hmac.compare_digest(legacy_hash(password), credential.hash.lower())
    raise TypeError(f"Unsupported credential type: {type(credential).__name__}")


def validate_password_strength(password: str) -> None:
    """Raise ``ValidationError`` unless the password meets the policy."""

    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not all(pattern.search(password) for pattern in _PASSWORD_CLASSES):
        raise ValidationError("Password must contain uppercase, lowercase, number, and special character")


def mask_email(email: str) -> str:
    """Obfuscate an email for log lines: ``a***n@e*****e.com`` style."""

    user, sep, domain = email.partition("@")
    if not sep or not user or not domain:
        return "***"

    def _mask(part: str) -> str:
        if len(part) <= 2:
            return part[0] + "*"
        return part[0] + "*" * (len(part) - 2) + part[-1]

    return f"{_mask(user)}@{_mask(domain)}"


class CredentialVerifier:
    """Checks passwords and keeps the failed-attempt counter and lock state.

    Lock lifecycle: every failure increments ``failed_attempts``; reaching
    ``max_failed_attempts`` locks the account for ``lockout_duration``. A
    locked account fails fast without a password check. Once the lock has
    elapsed the counter starts again from zero.
    """

    def __init__(
        self,
        admins: AdminStore,
        config: SecurityConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._admins = admins
        self._config = config
        self._clock = clock

    def is_locked(self, admin: Admin) -> bool:
        return admin.locked_until is not None and admin.locked_until > self._clock()

    def ensure_not_locked(self, admin: Admin) -> None:
        if self.is_locked(admin):
            LOGGER.info("Login blocked for locked admin id=%s", admin.id)
            raise AccountLocked(locked_until=admin.locked_until)

    def verify(self, admin: Admin, password: str) -> bool:
        """Return whether ``password`` is valid and persist the counter change."""

        self.ensure_not_locked(admin)

        if check_credential(admin.credential, password):
            if admin.failed_attempts or admin.locked_until is not None:
                self._admins.update_login_state(admin.id, 0, None)
            return True

        now = self._clock()
        # Incremented inside the store; concurrent failures all count.
        failed_attempts, locked_until = self._admins.register_failed_attempt(
            admin.id,
            now,
            self._config.max_failed_attempts,
            now + self._config.lockout_duration,
        )
        if locked_until is not None:
            LOGGER.warning(
                "Admin id=%s locked until %s after %s failed attempts",
                admin.id,
                locked_until.isoformat(),
                failed_attempts,
            )
        return False

    def upgrade_if_needed(self, admin: Admin, password: str) -> Admin:
        """Replace a matching legacy hash with a modern one.

        The login already succeeded at this point, so a failed write is logged
        and swallowed; the old hash keeps working until the next attempt.
        """

        if not isinstance(admin.credential, LegacyCredential):
            return admin
        if not check_credential(admin.credential, password):
            return admin

        credential = hash_password(password)
        try:
            self._admins.update_credential(admin.id, credential)
        except UpstreamFailure:
            LOGGER.exception("Password hash upgrade failed for admin id=%s", admin.id)
            return admin
        LOGGER.info("Password hash upgraded for admin id=%s", admin.id)
        return replace(admin, credential=credential)
