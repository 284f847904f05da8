from datetime import timedelta

import pytest

from authgate.auth import SessionManager, SessionUser, generate_session_token, SESSION_TTL_SECONDS
from authgate.identity import IdentityStore
from authgate.models import Session as SessionModel
from authgate.profiles import ProfileStore

from conftest import SECRET, make_settings


@pytest.fixture
def sessions(database, clock):
    return SessionManager(database, SECRET, clock=clock)


@pytest.fixture
def user_id(database, clock):
    return IdentityStore(database, clock=clock).resolve_or_create_user("email", "a@example.com")


def test_generated_tokens_are_long_and_unique():
    tokens = {generate_session_token() for _ in range(50)}
    assert len(tokens) == 50
    for token in tokens:
        # 32 random bytes, base64url without padding
        assert len(token) >= 43
        assert "=" not in token and "+" not in token and "/" not in token


def test_empty_secret_rejected(database):
    with pytest.raises(ValueError):
        SessionManager(database, "")


def test_issue_stores_only_digest(sessions, database, user_id, clock):
    token = sessions.issue(user_id, ip_address="203.0.113.9", user_agent="pytest")

    with database.session() as db:
        row = db.query(SessionModel).one()
        assert row.token_hash == sessions.hash_token(token)
        assert row.token_hash != token
        assert token not in (row.id, row.ip_address, row.user_agent)
        assert row.revoked_at is None
        assert row.ip_address == "203.0.113.9"
        assert row.user_agent == "pytest"
        stored_expiry = row.expires_at.replace(tzinfo=None)
    assert stored_expiry == (clock() + timedelta(days=7)).replace(tzinfo=None)


def test_metadata_truncated(sessions, database, user_id):
    sessions.issue(user_id, ip_address="1" * 300, user_agent="x" * 1000)

    with database.session() as db:
        row = db.query(SessionModel).one()
        assert len(row.ip_address) == 120
        assert len(row.user_agent) == 500


def test_hash_is_deterministic_and_keyed(sessions, database):
    other = SessionManager(database, "another-secret")
    assert sessions.hash_token("abc") == sessions.hash_token("abc")
    assert sessions.hash_token("abc") != sessions.hash_token("abd")
    assert sessions.hash_token("abc") != other.hash_token("abc")


def test_authenticate_valid_token(sessions, user_id):
    token = sessions.issue(user_id)
    assert sessions.authenticate(token) == SessionUser(user_id=user_id, profile_display_name=None)


def test_authenticate_includes_display_name(sessions, database, user_id, clock):
    ProfileStore(database, clock=clock).upsert_profile(user_id, "ada", "Ada")
    token = sessions.issue(user_id)

    assert sessions.authenticate(token).profile_display_name == "Ada"


def test_other_tokens_never_authenticate(sessions, user_id):
    token_a = sessions.issue(user_id)

    assert sessions.authenticate(token_a + "x") is None
    assert sessions.authenticate(generate_session_token()) is None
    # The digest itself is not a bearer credential
    assert sessions.authenticate(sessions.hash_token(token_a)) is None
    assert sessions.authenticate("") is None
    assert sessions.authenticate(None) is None


def test_secret_rotation_invalidates_sessions(sessions, database, user_id, clock):
    token = sessions.issue(user_id)
    rotated = SessionManager(database, "rotated-secret", clock=clock)
    assert rotated.authenticate(token) is None


def test_session_expires_at_ttl(sessions, user_id, clock):
    token = sessions.issue(user_id)

    clock.advance(SESSION_TTL_SECONDS - 1)
    assert sessions.authenticate(token) is not None

    clock.advance(1)
    assert sessions.authenticate(token) is None


def test_ttl_is_fixed_at_seven_days(tmp_path, monkeypatch):
    monkeypatch.setenv("SESSION_TTL_DAYS", "1")
    settings = make_settings(tmp_path)

    assert SESSION_TTL_SECONDS == 7 * 24 * 60 * 60
    assert settings.session_ttl_seconds == SESSION_TTL_SECONDS
    assert "session_ttl_days" not in type(settings).model_fields


def test_revoke_is_immediate_and_idempotent(sessions, database, user_id):
    token = sessions.issue(user_id)
    other = sessions.issue(user_id)

    assert sessions.revoke(token) is True
    assert sessions.authenticate(token) is None
    assert sessions.revoke(token) is False
    assert sessions.revoke("never-issued") is False
    assert sessions.revoke(None) is False

    # Only the targeted session was touched, and nothing was deleted
    assert sessions.authenticate(other) is not None
    with database.session() as db:
        assert db.query(SessionModel).count() == 2
        assert db.query(SessionModel).filter(SessionModel.revoked_at.isnot(None)).count() == 1


def test_revoke_all(sessions, database, clock, user_id):
    other_user = IdentityStore(database, clock=clock).resolve_or_create_user("email", "b@example.com")
    tokens = [sessions.issue(user_id) for _ in range(3)]
    other_token = sessions.issue(other_user)
    sessions.revoke(tokens[0])

    assert sessions.revoke_all(user_id) == 2
    assert all(sessions.authenticate(token) is None for token in tokens)
    assert sessions.authenticate(other_token) is not None
