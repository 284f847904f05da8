from sqlalchemy import Column, String, DateTime, ForeignKey, Index, UniqueConstraint, CheckConstraint
from authgate.database import Base
import uuid


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    Stable owner of one or more verified identities.

    Created exactly once per distinct verified identity and never deleted
    in the normal flow. Holds no credentials.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, status={self.status})>"


class UserIdentity(Base):
    """
    Verified contact identity (email or phone) owned by a user.

    The (type, normalized_value) unique constraint is the only guard against
    two concurrent first sign-ins creating two users.
    """
    __tablename__ = "user_identities"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(10), nullable=False)
    normalized_value = Column(String(320), nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("type", "normalized_value", name="uq_user_identities_type_value"),
        CheckConstraint("type IN ('phone', 'email')", name="ck_user_identities_type"),
    )

    def __repr__(self):
        return f"<UserIdentity(type={self.type}, user_id={self.user_id})>"


class Session(Base):
    """
    Server-side session storage.

    Design notes:
    - token_hash is a keyed digest of the bearer token; the raw token only
      ever lives in the client's cookie
    - valid iff revoked_at IS NULL AND expires_at > now
    - rows are never deleted, expiry is enforced at read time
    """
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    ip_address = Column(String(120), nullable=True)
    user_agent = Column(String(500), nullable=True)

    # Composite index for the lookup: digest plus freshness predicate
    __table_args__ = (
        Index("ix_session_lookup", "token_hash", "expires_at"),
    )

    def __repr__(self):
        return f"<Session(id={self.id}, user_id={self.user_id})>"


class Profile(Base):
    """
    One profile per user, upserted. A display name means setup is done.
    """
    __tablename__ = "profiles"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    # Stored lowercase so the unique constraint is case-insensitive
    handle = Column(String(20), unique=True, nullable=True)
    display_name = Column(String(40), nullable=False)
    bio = Column(String(220), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<Profile(user_id={self.user_id}, handle={self.handle})>"


class MagicLinkRequest(Base):
    """
    Append-only log of admitted magic link requests, used for rate limiting.
    """
    __tablename__ = "magic_link_requests"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(320), nullable=False)
    ip_address = Column(String(120), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        Index("ix_magic_link_requests_email_created", "email", "created_at"),
        Index("ix_magic_link_requests_ip_created", "ip_address", "created_at"),
    )


class DevMagicLink(Base):
    """
    Single-use sign-in link issued by the local development provider.
    """
    __tablename__ = "dev_magic_links"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(320), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)


class AvatarModel(Base):
    """
    Latest outcome of the avatar sample pipeline for a user.
    """
    __tablename__ = "avatar_models"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    status = Column(String(10), nullable=False)
    provider = Column(String(60), nullable=False)
    sample_image_path = Column(String(500), nullable=True)
    last_error = Column(String(300), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'ready', 'failed')", name="ck_avatar_models_status"),
    )
