from __future__ import annotations

from datetime import timedelta

import pytest

from adapters.sqlite_storage import SQLiteStorage
from core.auth import AuthService, ClientInfo
from core.config import RateLimitConfig, SecurityConfig
from core.credentials import CredentialVerifier, legacy_hash
from core.errors import (
    AccessDenied,
    AccountLocked,
    InvalidCredentials,
    RateLimited,
    SessionExpiredOrInvalid,
    ValidationError,
)
from core.models import LegacyCredential, ModernCredential
from core.ratelimit import RateLimiter
from core.sessions import SessionManager

EMAIL = "admin@example.com"
PASSWORD = "Correct-Horse-1!"
NEW_PASSWORD = "Battery-Staple-2?"
CLIENT = ClientInfo(ip_address="10.0.0.1", user_agent="pytest")


def _make_service(tmp_path, clock):
    storage = SQLiteStorage(str(tmp_path / "portal.db"))
    storage.init_db()
    security = SecurityConfig()
    auth = AuthService(
        admins=storage,
        activity=storage,
        verifier=CredentialVerifier(storage, security, clock),
        sessions=SessionManager(storage, storage, security, clock),
        rate_limiter=RateLimiter(storage, RateLimitConfig(), clock),
        clock=clock,
    )
    return auth, storage


def _actions(storage: SQLiteStorage, admin_id: int) -> list[str]:
    return [action for action, _ in storage.list_activity(admin_id)]


def test_login_opens_a_session(tmp_path, clock) -> None:
    auth, storage = _make_service(tmp_path, clock)
    admin = auth.create_admin(" Admin@Example.com ", PASSWORD)

    result = auth.login("ADMIN@example.com", PASSWORD, CLIENT)

    assert result.admin.email == EMAIL
    assert result.expires_at == clock.now + timedelta(hours=2)
    assert auth.validate(result.session_token).id == admin.id
    assert auth.current_session(result.session_token).admin.email == EMAIL
    assert storage.list_activity(admin.id) == [("successful_login", "10.0.0.1")]
    assert storage.get_admin(admin.id).last_login_at == clock.now


def test_unknown_email_and_wrong_password_look_the_same(tmp_path, clock) -> None:
    auth, _ = _make_service(tmp_path, clock)
    auth.create_admin(EMAIL, PASSWORD)

    with pytest.raises(InvalidCredentials) as unknown:
        auth.login("nobody@example.com", PASSWORD, CLIENT)
    with pytest.raises(InvalidCredentials) as wrong:
        auth.login(EMAIL, "Wrong-Password-9!", CLIENT)

    assert str(unknown.value) == str(wrong.value) == "Invalid credentials"


def test_missing_input_is_rejected(tmp_path, clock) -> None:
    auth, _ = _make_service(tmp_path, clock)
    with pytest.raises(ValidationError):
        auth.login("", PASSWORD, CLIENT)
    with pytest.raises(ValidationError):
        auth.login(EMAIL, "", CLIENT)


def test_sixth_attempt_is_rate_limited(tmp_path, clock) -> None:
    auth, _ = _make_service(tmp_path, clock)

    for _ in range(5):
        with pytest.raises(InvalidCredentials):
            auth.login("nobody@example.com", PASSWORD, CLIENT)
    with pytest.raises(RateLimited):
        auth.login("nobody@example.com", PASSWORD, CLIENT)

    clock.advance(timedelta(minutes=15, seconds=1))
    with pytest.raises(InvalidCredentials):
        auth.login("nobody@example.com", PASSWORD, CLIENT)


def test_account_locks_after_five_failures(tmp_path, clock) -> None:
    auth, storage = _make_service(tmp_path, clock)
    admin = auth.create_admin(EMAIL, PASSWORD)

    # Distinct addresses keep the rate limiter out of the way.
    for attempt in range(5):
        with pytest.raises(InvalidCredentials):
            auth.login(EMAIL, "Wrong-Password-9!", ClientInfo(ip_address=f"10.0.1.{attempt}"))

    with pytest.raises(AccountLocked):
        auth.login(EMAIL, PASSWORD, ClientInfo(ip_address="10.0.2.1"))
    assert _actions(storage, admin.id)[-1] == "failed_login_locked"
    assert _actions(storage, admin.id).count("failed_login_invalid_password") == 5

    clock.advance(timedelta(minutes=30, seconds=1))
    result = auth.login(EMAIL, PASSWORD, ClientInfo(ip_address="10.0.2.2"))
    assert result.admin.id == admin.id
    assert storage.get_admin(admin.id).failed_attempts == 0


def test_ip_allowlist(tmp_path, clock) -> None:
    auth, storage = _make_service(tmp_path, clock)
    admin = auth.create_admin(EMAIL, PASSWORD, ip_allowlist=["10.0.0.1"])

    with pytest.raises(AccessDenied):
        auth.login(EMAIL, PASSWORD, ClientInfo(ip_address="10.0.0.2"))
    assert "failed_login_ip_blocked" in _actions(storage, admin.id)

    assert auth.login(EMAIL, PASSWORD, CLIENT).admin.id == admin.id
    # Without a known origin the allowlist cannot be applied.
    assert auth.login(EMAIL, PASSWORD, ClientInfo()).admin.id == admin.id


def test_legacy_hash_is_upgraded_by_login(tmp_path, clock) -> None:
    auth, storage = _make_service(tmp_path, clock)
    admin = storage.create_admin(EMAIL, LegacyCredential(hash=legacy_hash(PASSWORD)))

    auth.login(EMAIL, PASSWORD, CLIENT)

    stored = storage.get_admin(admin.id)
    assert isinstance(stored.credential, ModernCredential)
    assert auth.login(EMAIL, PASSWORD, CLIENT).admin.id == admin.id


def test_logout_and_refresh(tmp_path, clock) -> None:
    auth, storage = _make_service(tmp_path, clock)
    admin = auth.create_admin(EMAIL, PASSWORD)
    token = auth.login(EMAIL, PASSWORD, CLIENT).session_token

    refreshed = auth.refresh_session(token, CLIENT)
    assert refreshed.session_token != token
    with pytest.raises(SessionExpiredOrInvalid):
        auth.validate(token)

    auth.logout(refreshed.session_token, CLIENT)
    auth.logout(refreshed.session_token, CLIENT)
    with pytest.raises(SessionExpiredOrInvalid):
        auth.validate(refreshed.session_token)

    assert _actions(storage, admin.id) == ["successful_login", "session_refreshed", "logout"]


def test_change_password_signs_out_everywhere(tmp_path, clock) -> None:
    auth, storage = _make_service(tmp_path, clock)
    admin = auth.create_admin(EMAIL, PASSWORD)
    first = auth.login(EMAIL, PASSWORD, CLIENT).session_token
    second = auth.login(EMAIL, PASSWORD, ClientInfo(ip_address="10.0.0.9")).session_token

    auth.change_password(first, PASSWORD, NEW_PASSWORD, CLIENT)

    for token in (first, second):
        with pytest.raises(SessionExpiredOrInvalid):
            auth.validate(token)
    with pytest.raises(InvalidCredentials):
        auth.login(EMAIL, PASSWORD, ClientInfo(ip_address="10.0.0.3"))
    assert auth.login(EMAIL, NEW_PASSWORD, ClientInfo(ip_address="10.0.0.4")).admin.id == admin.id
    assert "password_changed" in _actions(storage, admin.id)


def test_change_password_rejects_wrong_current_or_weak_new(tmp_path, clock) -> None:
    auth, storage = _make_service(tmp_path, clock)
    admin = auth.create_admin(EMAIL, PASSWORD)
    token = auth.login(EMAIL, PASSWORD, CLIENT).session_token

    with pytest.raises(InvalidCredentials, match="Current password is incorrect"):
        auth.change_password(token, "Wrong-Password-9!", NEW_PASSWORD, CLIENT)
    with pytest.raises(ValidationError):
        auth.change_password(token, PASSWORD, "short", CLIENT)

    assert auth.validate(token).id == admin.id
    assert "failed_password_change" in _actions(storage, admin.id)


def test_create_admin_validation(tmp_path, clock) -> None:
    auth, _ = _make_service(tmp_path, clock)
    auth.create_admin(EMAIL, PASSWORD)

    with pytest.raises(ValidationError):
        auth.create_admin(EMAIL, NEW_PASSWORD)
    with pytest.raises(ValidationError):
        auth.create_admin("other@example.com", "abc123")
    with pytest.raises(ValidationError):
        auth.create_admin("not-an-email", PASSWORD)
