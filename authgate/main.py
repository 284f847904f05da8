import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from authgate.auth import SessionManager
from authgate.avatar import AvatarPipeline, AvatarTracker
from authgate.config import Settings, get_settings
from authgate.database import Database, Clock, utcnow
from authgate.errors import register_exception_handlers
from authgate.identity import IdentityStore
from authgate.profiles import ProfileStore
from authgate.providers.local import LocalEmailProvider
from authgate.providers.supabase import SupabaseEmailProvider
from authgate.providers.twilio import TwilioVerifyProvider
from authgate.rate_limit import MagicLinkRateLimiter
from authgate.routers import auth_router, profile_router

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def build_email_provider(settings: Settings, database: Database, clock: Clock):
    if settings.uses_local_provider:
        logger.warning("Using local magic link provider; links are logged, not emailed")
        return LocalEmailProvider(database, ttl_seconds=settings.dev_magic_link_ttl_seconds, clock=clock)
    return SupabaseEmailProvider(
        settings.supabase_url,
        settings.supabase_anon_key,
        timeout=settings.provider_timeout_seconds
    )


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    email_provider=None,
    sms_provider=None,
    avatar_pipeline: Optional[AvatarPipeline] = None,
    clock: Clock = utcnow
) -> FastAPI:
    """
    Build the application and its components.

    Everything the routes need is constructed here once and hung off
    app.state; collaborators can be swapped in for tests.
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    database = database or Database(settings.database_url, echo=settings.debug)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler.
        Runs on startup and shutdown.
        """
        # Startup: bring the schema up to date, once
        database.init()
        yield
        database.dispose()

    app = FastAPI(
        title="authgate",
        description="Passwordless sign-in with server-side sessions",
        version=VERSION,
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.database = database
    app.state.session_manager = SessionManager(
        database,
        settings.session_secret_key,
        ttl_seconds=settings.session_ttl_seconds,
        clock=clock
    )
    app.state.identity_store = IdentityStore(database, clock=clock)
    app.state.rate_limiter = MagicLinkRateLimiter(
        database,
        cooldown_seconds=settings.magic_link_cooldown_seconds,
        window_seconds=settings.magic_link_window_seconds,
        max_per_identity=settings.magic_link_max_per_identity,
        max_per_ip=settings.magic_link_max_per_ip,
        retention_seconds=settings.magic_link_retention_seconds,
        clock=clock
    )
    app.state.profile_store = ProfileStore(database, clock=clock)
    app.state.avatar_tracker = AvatarTracker(database, avatar_pipeline or AvatarPipeline(), clock=clock)
    app.state.email_provider = email_provider or build_email_provider(settings, database, clock)
    app.state.sms_provider = sms_provider or TwilioVerifyProvider(
        settings.twilio_account_sid,
        settings.twilio_auth_token,
        settings.twilio_verify_service_sid,
        timeout=settings.provider_timeout_seconds
    )

    # CORS configuration
    # In production, restrict origins to your frontend domain
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],  # Restrict in production
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app)

    # Register routers
    app.include_router(auth_router.router)
    app.include_router(profile_router.router)

    @app.get("/")
    async def root():
        """
        Health check endpoint.
        """
        return {
            "status": "running",
            "version": VERSION
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host="0.0.0.0",
        port=8000
    )
