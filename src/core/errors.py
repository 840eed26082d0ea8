"""Error taxonomy shared by the core services and adapters.

Messages are fixed, caller-safe strings. Login failures never say whether the
email or the password was wrong, and session failures never say whether the
token was unknown or expired.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class PortalError(Exception):
    """Base class for every error the core raises on purpose."""

    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class InvalidCredentials(PortalError):
    default_message = "Invalid credentials"


class AccountLocked(PortalError):
    default_message = "Account is temporarily locked due to too many failed attempts"

    def __init__(self, locked_until: Optional[datetime] = None, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.locked_until = locked_until


class RateLimited(PortalError):
    default_message = "Too many login attempts. Please try again later."


class AccessDenied(PortalError):
    default_message = "Access denied from this IP address"


class SessionExpiredOrInvalid(PortalError):
    default_message = "Invalid or expired session"


class ValidationError(PortalError):
    default_message = "Invalid input"


class NotFound(PortalError):
    default_message = "Not found"


class DuplicateSkipped(PortalError):
    """Idempotent no-op: the record already exists."""

    default_message = "Already exists"


class UpstreamFailure(PortalError):
    """The store or the feed could not be reached or returned an error."""

    default_message = "Upstream service failure"
