"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

SESSION_TTL = timedelta(hours=2)
LOCKOUT_DURATION = timedelta(minutes=30)
MAX_FAILED_ATTEMPTS = 5
RATE_LIMIT_WINDOW = timedelta(minutes=15)
RATE_LIMIT_MAX_ATTEMPTS = 5
TITLE_MAX_CHARS = 100
DEFAULT_TITLE = "Untitled"


@dataclass(frozen=True)
class SecurityConfig:
    """Session lifetime and account lockout settings."""

    session_ttl: timedelta = SESSION_TTL
    max_failed_attempts: int = MAX_FAILED_ATTEMPTS
    lockout_duration: timedelta = LOCKOUT_DURATION

    def __post_init__(self) -> None:
        if self.session_ttl <= timedelta(0):
            raise ValueError("session_ttl must be positive")
        if self.max_failed_attempts < 1:
            raise ValueError("max_failed_attempts must be at least 1")


@dataclass(frozen=True)
class RateLimitConfig:
    """Login throttle: at most ``max_attempts`` per key per ``window``."""

    window: timedelta = RATE_LIMIT_WINDOW
    max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS


@dataclass(frozen=True)
class IngestConfig:
    """Title generation settings for the ingest pipeline."""

    default_title: str = DEFAULT_TITLE
    title_max_chars: int = TITLE_MAX_CHARS
