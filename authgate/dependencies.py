from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from authgate.auth import SessionManager, SessionUser
from authgate.avatar import AvatarTracker
from authgate.config import Settings
from authgate.identity import IdentityStore
from authgate.profiles import ProfileStore
from authgate.rate_limit import MagicLinkRateLimiter


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_identity_store(request: Request) -> IdentityStore:
    return request.app.state.identity_store


def get_rate_limiter(request: Request) -> MagicLinkRateLimiter:
    return request.app.state.rate_limiter


def get_profile_store(request: Request) -> ProfileStore:
    return request.app.state.profile_store


def get_avatar_tracker(request: Request) -> AvatarTracker:
    return request.app.state.avatar_tracker


def get_email_provider(request: Request):
    return request.app.state.email_provider


def get_sms_provider(request: Request):
    return request.app.state.sms_provider


def get_session_token(request: Request, settings: Settings = Depends(get_app_settings)) -> Optional[str]:
    return request.cookies.get(settings.session_cookie_name)


def get_client_ip(request: Request) -> Optional[str]:
    """
    Address of the caller for rate limiting and session metadata.

    X-Forwarded-For is client-controlled, so its first entry is only used
    when the socket peer is one of the configured trusted proxies.
    """
    peer = request.client.host if request.client else None
    if peer and peer in request.app.state.settings.trusted_proxies:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            first = forwarded_for.split(",")[0].strip()
            if first:
                return first
    return peer


def get_optional_user(
    token: Optional[str] = Depends(get_session_token),
    sessions: SessionManager = Depends(get_session_manager)
) -> Optional[SessionUser]:
    return sessions.authenticate(token)


def get_current_user(user: Optional[SessionUser] = Depends(get_optional_user)) -> SessionUser:
    """
    Require a valid session.
    Missing, expired and revoked sessions all get the same 401.
    """
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user
