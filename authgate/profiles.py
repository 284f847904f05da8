import re
from typing import Optional

from authgate.database import Database, Clock, utcnow
from authgate.models import Profile

HANDLE_RE = re.compile(r"^[a-z0-9_]{3,20}$")
DISPLAY_NAME_MAX = 40
BIO_MAX = 220


def normalize_handle(value: str) -> Optional[str]:
    cleaned = value.strip().lower().lstrip("@")
    if not HANDLE_RE.match(cleaned):
        return None
    return cleaned


def sanitize_text(value: Optional[str], max_length: int) -> Optional[str]:
    """Collapse whitespace and clip. Blank input becomes None."""
    if value is None:
        return None
    cleaned = re.sub(r"\s+", " ", value.strip())
    if not cleaned:
        return None
    return cleaned[:max_length]


class ProfileStore:

    def __init__(self, database: Database, clock: Clock = utcnow):
        self.database = database
        self.clock = clock

    def get_profile(self, user_id: str) -> Optional[dict]:
        with self.database.session() as db:
            profile = db.query(Profile).filter(Profile.user_id == user_id).first()
            if not profile:
                return None
            return {
                "handle": profile.handle,
                "display_name": profile.display_name,
                "bio": profile.bio,
            }

    def is_handle_taken(self, handle: str, exclude_user_id: Optional[str] = None) -> bool:
        with self.database.session() as db:
            query = db.query(Profile.user_id).filter(Profile.handle == handle.lower())
            if exclude_user_id:
                query = query.filter(Profile.user_id != exclude_user_id)
            return query.first() is not None

    def upsert_profile(self, user_id: str, handle: str, display_name: str, bio: Optional[str] = None):
        """
        Create or replace the user's profile.
        Raises IntegrityError if another user claimed the handle meanwhile.
        """
        timestamp = self.clock()

        with self.database.session() as db:
            profile = db.query(Profile).filter(Profile.user_id == user_id).first()
            if profile is None:
                profile = Profile(user_id=user_id, created_at=timestamp)
                db.add(profile)

            profile.handle = handle.lower()
            profile.display_name = display_name
            profile.bio = bio
            profile.updated_at = timestamp
            db.commit()
