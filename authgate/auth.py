import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from authgate.database import Database, Clock, utcnow
from authgate.models import Session as SessionModel, Profile

logger = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 60 * 60 * 24 * 7


@dataclass(frozen=True)
class SessionUser:
    user_id: str
    profile_display_name: Optional[str] = None


def generate_session_token() -> str:
    """
    Generate cryptographically secure bearer token.

    Uses 32 bytes (256 bits) of randomness, URL-safe base64 encoded
    so it can travel in a cookie unchanged.
    """
    return secrets.token_urlsafe(32)


class SessionManager:
    """
    Issues, validates and revokes bearer session tokens.

    Only a keyed digest of each token is stored. A leaked sessions table
    cannot be replayed as cookies without the server secret, and validation
    is a single indexed lookup with the freshness predicate, so no sweep of
    expired rows is ever needed.
    """

    def __init__(
        self,
        database: Database,
        secret_key: str,
        ttl_seconds: int = SESSION_TTL_SECONDS,
        clock: Clock = utcnow
    ):
        if not secret_key:
            raise ValueError("session secret key must not be empty")
        self.database = database
        self._secret = secret_key.encode()
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def hash_token(self, token: str) -> str:
        """
        HMAC-SHA256 of the raw token, hex encoded.
        Deterministic so it can be used as the lookup key.
        """
        return hmac.new(self._secret, token.encode(), hashlib.sha256).hexdigest()

    def issue(self, user_id: str, ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> str:
        """
        Create new session for user.

        Returns the raw token to be stored in cookie. It is not kept
        anywhere on the server.
        """
        token = generate_session_token()
        created_at = self.clock()

        session = SessionModel(
            user_id=user_id,
            token_hash=self.hash_token(token),
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=self.ttl_seconds),
            ip_address=ip_address[:120] if ip_address else None,
            user_agent=user_agent[:500] if user_agent else None
        )

        with self.database.session() as db:
            db.add(session)
            db.commit()

        logger.info("Issued session for user %s", user_id)
        return token

    def authenticate(self, token: Optional[str]) -> Optional[SessionUser]:
        """
        Validate token and retrieve the session's user.

        Returns None if the session doesn't exist, is expired or was revoked.
        The caller cannot tell these apart.
        """
        if not token:
            return None

        with self.database.session() as db:
            row = db.query(SessionModel.user_id, Profile.display_name).outerjoin(
                Profile, Profile.user_id == SessionModel.user_id
            ).filter(
                SessionModel.token_hash == self.hash_token(token),
                SessionModel.revoked_at.is_(None),
                SessionModel.expires_at > self.clock()
            ).first()

        if not row:
            return None

        user_id, display_name = row
        return SessionUser(user_id=user_id, profile_display_name=display_name)

    def revoke(self, token: Optional[str]) -> bool:
        """
        Revoke session (logout).

        Returns True if a live session was revoked. Unknown or already
        revoked tokens are a no-op.
        """
        if not token:
            return False

        with self.database.session() as db:
            result = db.query(SessionModel).filter(
                SessionModel.token_hash == self.hash_token(token),
                SessionModel.revoked_at.is_(None)
            ).update({SessionModel.revoked_at: self.clock()}, synchronize_session=False)
            db.commit()

        return result > 0

    def revoke_all(self, user_id: str) -> int:
        """
        Revoke every live session for a user ("log out everywhere").

        Returns number of sessions revoked.
        """
        with self.database.session() as db:
            result = db.query(SessionModel).filter(
                SessionModel.user_id == user_id,
                SessionModel.revoked_at.is_(None)
            ).update({SessionModel.revoked_at: self.clock()}, synchronize_session=False)
            db.commit()

        logger.info("Revoked %s sessions for user %s", result, user_id)
        return result
