import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import func

from authgate.database import Database, Clock, utcnow, as_utc
from authgate.models import MagicLinkRequest

logger = logging.getLogger(__name__)

REASON_OK = "ok"
REASON_COOLDOWN = "cooldown"
REASON_EMAIL_WINDOW = "email_window_limit"
REASON_IP_WINDOW = "ip_window_limit"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_seconds: int
    reason: str


class MagicLinkRateLimiter:
    """
    Cooldown and sliding-window caps on magic link issuance.

    Gates, in order, each a hard reject:
    1. cooldown since the identity's last admitted request
    2. admitted requests for the identity in the trailing window
    3. admitted requests from the origin address in the trailing window

    Only admitted requests are logged, so rejected attempts never count
    against later ones. Count-then-insert is not atomic; under heavy
    concurrency the caps are approximate.
    """

    def __init__(
        self,
        database: Database,
        cooldown_seconds: int = 60,
        window_seconds: int = 15 * 60,
        max_per_identity: int = 5,
        max_per_ip: int = 20,
        retention_seconds: int = 24 * 60 * 60,
        clock: Clock = utcnow
    ):
        self.database = database
        self.cooldown_seconds = cooldown_seconds
        self.window_seconds = window_seconds
        self.max_per_identity = max_per_identity
        self.max_per_ip = max_per_ip
        self.retention_seconds = retention_seconds
        self.clock = clock

    def _window_retry_after(self, oldest, now) -> int:
        # Seconds until the oldest counted request slides out of the window
        remaining = (as_utc(oldest) + timedelta(seconds=self.window_seconds) - now).total_seconds()
        return max(1, math.ceil(remaining))

    def consume(self, identity: str, ip_address: Optional[str] = None) -> RateLimitDecision:
        ip_address = ip_address[:120] if ip_address else None
        now = self.clock()
        window_start = now - timedelta(seconds=self.window_seconds)

        with self.database.session() as db:
            last = db.query(func.max(MagicLinkRequest.created_at)).filter(
                MagicLinkRequest.email == identity
            ).scalar()

            if last is not None:
                elapsed = (now - as_utc(last)).total_seconds()
                if elapsed < self.cooldown_seconds:
                    return RateLimitDecision(
                        allowed=False,
                        retry_after_seconds=max(1, math.ceil(self.cooldown_seconds - elapsed)),
                        reason=REASON_COOLDOWN
                    )

            count, oldest = db.query(
                func.count(MagicLinkRequest.id), func.min(MagicLinkRequest.created_at)
            ).filter(
                MagicLinkRequest.email == identity,
                MagicLinkRequest.created_at > window_start
            ).one()

            if count >= self.max_per_identity:
                logger.info("Magic link window limit reached for identity")
                return RateLimitDecision(
                    allowed=False,
                    retry_after_seconds=self._window_retry_after(oldest, now),
                    reason=REASON_EMAIL_WINDOW
                )

            if ip_address:
                count, oldest = db.query(
                    func.count(MagicLinkRequest.id), func.min(MagicLinkRequest.created_at)
                ).filter(
                    MagicLinkRequest.ip_address == ip_address,
                    MagicLinkRequest.created_at > window_start
                ).one()

                if count >= self.max_per_ip:
                    logger.warning("Magic link window limit reached for address %s", ip_address)
                    return RateLimitDecision(
                        allowed=False,
                        retry_after_seconds=self._window_retry_after(oldest, now),
                        reason=REASON_IP_WINDOW
                    )

            db.add(MagicLinkRequest(email=identity, ip_address=ip_address, created_at=now))
            db.query(MagicLinkRequest).filter(
                MagicLinkRequest.created_at < now - timedelta(seconds=self.retention_seconds)
            ).delete(synchronize_session=False)
            db.commit()

        return RateLimitDecision(allowed=True, retry_after_seconds=0, reason=REASON_OK)
