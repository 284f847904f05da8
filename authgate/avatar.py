"""
Bookkeeping around the avatar sample pipeline.

The pipeline itself is a black box. This module records what it was
asked to do and how that went, so a failed sample never fails the
profile save that triggered it.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from authgate.database import Database, Clock, utcnow
from authgate.models import AvatarModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvatarSampleResult:
    ok: bool
    path: Optional[str] = None
    error: Optional[str] = None


class AvatarPipeline:
    """Interface for sample generators. Subclasses override generate_sample."""

    name = "unconfigured"

    async def generate_sample(self, user_id: str) -> AvatarSampleResult:
        return AvatarSampleResult(ok=False, error="Avatar sample generator is not configured")


class AvatarTracker:

    def __init__(self, database: Database, pipeline: AvatarPipeline, clock: Clock = utcnow):
        self.database = database
        self.pipeline = pipeline
        self.clock = clock

    def _update(self, user_id: str, **fields):
        timestamp = self.clock()
        with self.database.session() as db:
            model = db.query(AvatarModel).filter(AvatarModel.user_id == user_id).first()
            if model is None:
                model = AvatarModel(user_id=user_id, created_at=timestamp)
                db.add(model)
            for key, value in fields.items():
                setattr(model, key, value)
            model.updated_at = timestamp
            db.commit()

    def mark_pending(self, user_id: str):
        self._update(user_id, status="pending", provider=self.pipeline.name, last_error=None)

    def mark_ready(self, user_id: str, sample_image_path: str):
        self._update(user_id, status="ready", sample_image_path=sample_image_path, last_error=None)

    def mark_failed(self, user_id: str, error: str):
        self._update(user_id, status="failed", last_error=error[:300])

    def get_status(self, user_id: str) -> Optional[dict]:
        with self.database.session() as db:
            model = db.query(AvatarModel).filter(AvatarModel.user_id == user_id).first()
            if not model:
                return None
            return {
                "status": model.status,
                "provider": model.provider,
                "sample_image_path": model.sample_image_path,
                "last_error": model.last_error,
            }

    async def run(self, user_id: str) -> str:
        """
        Generate a sample for the user and record the outcome.
        Returns the final status.
        """
        self.mark_pending(user_id)
        try:
            result = await self.pipeline.generate_sample(user_id)
        except Exception as e:
            logger.error("Avatar pipeline %s crashed for user %s", self.pipeline.name, user_id, exc_info=True)
            result = AvatarSampleResult(ok=False, error=str(e) or "Avatar generation failed")

        if result.ok and result.path:
            self.mark_ready(user_id, result.path)
            return "ready"

        self.mark_failed(user_id, result.error or "Avatar generation failed")
        logger.info("Avatar sample failed for user %s: %s", user_id, result.error)
        return "failed"
