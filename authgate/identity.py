import logging
import re
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from authgate.database import Database, Clock, utcnow
from authgate.errors import IdentityConflictError
from authgate.models import User, UserIdentity, Profile

logger = logging.getLogger(__name__)

IDENTITY_TYPES = ("email", "phone")

_E164_RE = re.compile(r"^\+[1-9]\d{7,14}$")


def normalize_email(raw_email: str) -> str:
    return raw_email.strip().lower()


def normalize_phone(raw_phone: str) -> Optional[str]:
    """
    Reduce a North American number to E.164.

    10 digits get a +1 prefix, 11 digits starting with 1 get a +.
    Anything else is not a number we can text, so None.
    """
    digits = re.sub(r"\D", "", raw_phone)
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    return None


class IdentityStore:
    """
    Maps verified contact identities to stable user ids.

    Owns the uniqueness invariant on (type, normalized_value). Emails are
    normalized here; phone numbers must already be in E.164 form.
    """

    def __init__(self, database: Database, clock: Clock = utcnow):
        self.database = database
        self.clock = clock

    def _find_user_id(self, db: Session, identity_type: str, normalized_value: str) -> Optional[str]:
        return db.query(UserIdentity.user_id).filter(
            UserIdentity.type == identity_type,
            UserIdentity.normalized_value == normalized_value
        ).scalar()

    def resolve_or_create_user(self, identity_type: str, normalized_value: str) -> str:
        """
        Return the user owning this identity, creating both on first sight.

        The user and identity rows are inserted in one transaction. If a
        concurrent first sign-in for the same identity commits first, our
        identity insert hits the unique constraint; we roll back (discarding
        our user row) and read the winner's user id instead.

        Raises ValueError for an unknown type or a phone not in E.164 form,
        and IdentityConflictError if the re-read still finds nothing.
        """
        if identity_type not in IDENTITY_TYPES:
            raise ValueError(f"Unknown identity type: {identity_type}")
        if identity_type == "email":
            normalized_value = normalize_email(normalized_value)
        elif not _E164_RE.match(normalized_value):
            raise ValueError("Phone identities must be in E.164 form")

        with self.database.session() as db:
            existing = self._find_user_id(db, identity_type, normalized_value)
            if existing:
                return existing

            timestamp = self.clock()
            user = User(status="active", created_at=timestamp, updated_at=timestamp)
            try:
                db.add(user)
                db.flush()
                user_id = user.id
                db.add(UserIdentity(
                    user_id=user_id,
                    type=identity_type,
                    normalized_value=normalized_value,
                    verified_at=timestamp,
                    created_at=timestamp
                ))
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                logger.info("Concurrent first sign-in for %s identity, re-reading", identity_type)

                winner = self._find_user_id(db, identity_type, normalized_value)
                if winner:
                    return winner
                raise IdentityConflictError(
                    f"{identity_type} identity insert conflicted but no owner was found"
                ) from exc

            logger.info("Created user %s for new %s identity", user_id, identity_type)
            return user_id

    def list_recent_email_identities(self, limit: int = 8) -> list:
        """
        Most recently created email identities with their display names.
        Only used by the local development sign-in picker.
        """
        with self.database.session() as db:
            rows = db.query(UserIdentity.normalized_value, Profile.display_name).outerjoin(
                Profile, Profile.user_id == UserIdentity.user_id
            ).filter(
                UserIdentity.type == "email"
            ).order_by(
                UserIdentity.created_at.desc()
            ).limit(limit).all()

        return [{"email": email, "display_name": display_name} for email, display_name in rows]
