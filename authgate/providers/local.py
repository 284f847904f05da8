"""
Local development stand-in for the email provider.

Instead of sending mail, each magic link is stored as a single-use token.
Its callback URL is written to the log and returned in the send result.
"""
import logging
import secrets
from datetime import timedelta
from urllib.parse import urlencode

from authgate.database import Database, Clock, utcnow
from authgate.models import DevMagicLink
from authgate.providers.results import Ok, Err, ProviderErrorKind, ProviderResult

logger = logging.getLogger(__name__)

LOCAL_LINK_TYPE = "localdev"


class LocalEmailProvider:

    name = "local"

    def __init__(
        self,
        database: Database,
        ttl_seconds: int = 15 * 60,
        retention_seconds: int = 24 * 60 * 60,
        clock: Clock = utcnow
    ):
        self.database = database
        self.ttl_seconds = ttl_seconds
        self.retention_seconds = retention_seconds
        self.clock = clock

    async def send_magic_link(self, email: str, redirect_url: str) -> ProviderResult:
        now = self.clock()
        token_hash = secrets.token_hex(24)

        with self.database.session() as db:
            db.add(DevMagicLink(
                email=email,
                token_hash=token_hash,
                created_at=now,
                expires_at=now + timedelta(seconds=self.ttl_seconds)
            ))
            db.query(DevMagicLink).filter(
                (DevMagicLink.expires_at < now - timedelta(seconds=self.retention_seconds))
                | (DevMagicLink.consumed_at.isnot(None))
            ).delete(synchronize_session=False)
            db.commit()

        separator = "&" if "?" in redirect_url else "?"
        link = f"{redirect_url}{separator}{urlencode({'token_hash': token_hash, 'type': LOCAL_LINK_TYPE})}"
        logger.info("Local magic link for %s: %s", email, link)
        return Ok(dev_link=link)

    async def verify_magic_link(self, token_hash: str, link_type: str) -> ProviderResult:
        if link_type != LOCAL_LINK_TYPE:
            return Err(ProviderErrorKind.DENIED, "Unsupported link type")

        now = self.clock()
        with self.database.session() as db:
            # Conditional update doubles as the single-use check
            consumed = db.query(DevMagicLink).filter(
                DevMagicLink.token_hash == token_hash,
                DevMagicLink.consumed_at.is_(None),
                DevMagicLink.expires_at > now
            ).update({DevMagicLink.consumed_at: now}, synchronize_session=False)

            if not consumed:
                db.rollback()
                return Err(ProviderErrorKind.DENIED, "Link not found")

            email = db.query(DevMagicLink.email).filter(
                DevMagicLink.token_hash == token_hash
            ).scalar()
            db.commit()

        return Ok(email=email)

    async def resolve_email_from_access_token(self, access_token: str) -> ProviderResult:
        return Err(ProviderErrorKind.DENIED, "Access tokens are not supported by the local provider")
