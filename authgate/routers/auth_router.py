import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status

from authgate.auth import SessionManager, SessionUser
from authgate.config import Settings
from authgate.dependencies import (
    get_app_settings,
    get_client_ip,
    get_current_user,
    get_email_provider,
    get_identity_store,
    get_optional_user,
    get_rate_limiter,
    get_session_manager,
    get_session_token,
    get_sms_provider,
)
from authgate.errors import (
    INVALID_CODE_MESSAGE,
    INVALID_LINK_MESSAGE,
    InvalidCredentialError,
    ProviderFailureError,
    RateLimitExceededError,
)
from authgate.identity import IdentityStore
from authgate.profile_gate import next_path_for
from authgate.providers.local import LOCAL_LINK_TYPE
from authgate.providers.results import Err, ProviderErrorKind
from authgate.rate_limit import MagicLinkRateLimiter
from authgate.schemas import (
    AuthCompleteResponse,
    CompleteMagicLinkRequest,
    DevIdentitiesResponse,
    DevIdentity,
    MeResponse,
    MessageResponse,
    NextPathResponse,
    SendCodeRequest,
    SendCodeResponse,
    SendEmailCodeRequest,
    VerifyCodeRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

SUPABASE_LINK_TYPES = {"magiclink", "signup", "email"}
PROVIDER_RETRY_AFTER_SECONDS = 60


def _raise_for_send_failure(result: Err, channel: str):
    """
    Map a failed send to an HTTP error.
    Config problems are fatal, everything else is worth retrying.
    """
    if result.kind == ProviderErrorKind.CONFIG:
        logger.error("%s provider is not configured: %s", channel, result.message)
        raise ProviderFailureError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"{channel} sign-in is temporarily unavailable"
        )
    if result.kind == ProviderErrorKind.RATE_LIMITED:
        raise RateLimitExceededError(
            PROVIDER_RETRY_AFTER_SECONDS,
            "provider_rate_limit",
            f"{channel} provider rate limit reached. Please wait {PROVIDER_RETRY_AFTER_SECONDS}s and try again."
        )
    raise ProviderFailureError(
        status.HTTP_502_BAD_GATEWAY,
        f"Could not send your {channel.lower()} sign-in. Please try again."
    )


def _raise_for_verify_failure(result: Err, channel: str, invalid_message: str):
    """
    Map a failed verification to an HTTP error.
    Denied and rejected credentials share one generic message.
    """
    if result.kind == ProviderErrorKind.CONFIG:
        logger.error("%s provider is not configured: %s", channel, result.message)
        raise ProviderFailureError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"{channel} sign-in is temporarily unavailable"
        )
    if result.kind == ProviderErrorKind.RATE_LIMITED:
        raise RateLimitExceededError(PROVIDER_RETRY_AFTER_SECONDS, "provider_rate_limit")
    if result.kind == ProviderErrorKind.UNAVAILABLE:
        raise ProviderFailureError(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Verification is taking too long. Please try again."
        )
    raise InvalidCredentialError(invalid_message)


def _callback_url(request: Request, settings: Settings) -> str:
    base = settings.public_base_url or str(request.base_url)
    return base.rstrip("/") + "/auth/callback"


def _set_session_cookie(response: Response, settings: Settings, token: str):
    """
    Set session cookie with security flags.

    Cookie attributes:
    - httponly: Prevents JavaScript access (XSS protection)
    - secure: HTTPS only (must be True in production)
    - samesite: Lax for CSRF protection while allowing normal navigation
    - max_age: matches the server-side session lifetime

    The cookie carries the raw bearer token. Only its digest is stored.
    """
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
        max_age=settings.session_ttl_seconds,
        path="/",
        domain=settings.cookie_domain if settings.cookie_domain != "localhost" else None
    )


def _clear_session_cookie(response: Response, settings: Settings):
    response.delete_cookie(
        key=settings.session_cookie_name,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
        path="/",
        domain=settings.cookie_domain if settings.cookie_domain != "localhost" else None
    )


def _start_session(
    request: Request,
    response: Response,
    settings: Settings,
    sessions: SessionManager,
    user_id: str
) -> str:
    """
    Issue a session, set the cookie and return where the client goes next.
    """
    token = sessions.issue(
        user_id,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent")
    )
    _set_session_cookie(response, settings, token)
    return next_path_for(sessions.authenticate(token))


@router.post("/send-email-code", response_model=SendCodeResponse, response_model_exclude_none=True)
async def send_email_code(
    body: SendEmailCodeRequest,
    request: Request,
    settings: Settings = Depends(get_app_settings),
    limiter: MagicLinkRateLimiter = Depends(get_rate_limiter),
    email_provider=Depends(get_email_provider)
):
    """
    Send a magic link.

    Rate limiting runs before the provider is contacted, so rejected
    requests cost nothing and are not logged as attempts.
    """
    email = str(body.email)

    decision = limiter.consume(email, get_client_ip(request))
    if not decision.allowed:
        raise RateLimitExceededError(decision.retry_after_seconds, decision.reason)

    result = await email_provider.send_magic_link(email, _callback_url(request, settings))
    if isinstance(result, Err):
        _raise_for_send_failure(result, "Email")

    if settings.uses_local_provider:
        return SendCodeResponse(dev_mode=True, dev_link=result.dev_link)
    return SendCodeResponse()


@router.post("/complete-magic-link", response_model=AuthCompleteResponse)
async def complete_magic_link(
    body: CompleteMagicLinkRequest,
    request: Request,
    response: Response,
    settings: Settings = Depends(get_app_settings),
    identities: IdentityStore = Depends(get_identity_store),
    sessions: SessionManager = Depends(get_session_manager),
    email_provider=Depends(get_email_provider)
):
    """
    Exchange a magic link callback for a session.

    Expired, consumed and unknown links all produce the same 401.
    """
    if body.access_token:
        result = await email_provider.resolve_email_from_access_token(body.access_token)
    else:
        allowed_types = {LOCAL_LINK_TYPE} if settings.uses_local_provider else SUPABASE_LINK_TYPES
        if body.type not in allowed_types:
            raise ProviderFailureError(status.HTTP_400_BAD_REQUEST, "Unsupported callback type")
        result = await email_provider.verify_magic_link(body.token_hash, body.type)

    if isinstance(result, Err):
        _raise_for_verify_failure(result, "Email", INVALID_LINK_MESSAGE)

    user_id = identities.resolve_or_create_user("email", result.email)
    next_path = _start_session(request, response, settings, sessions, user_id)
    return AuthCompleteResponse(next_path=next_path)


@router.post("/send-code", response_model=SendCodeResponse, response_model_exclude_none=True)
async def send_code(body: SendCodeRequest, sms_provider=Depends(get_sms_provider)):
    """
    Text a one-time code to a phone number (normalised to E.164 by the schema).
    """
    result = await sms_provider.send_verification_code(body.phone)
    if isinstance(result, Err):
        _raise_for_send_failure(result, "SMS")
    return SendCodeResponse()


@router.post("/verify-code", response_model=AuthCompleteResponse)
async def verify_code(
    body: VerifyCodeRequest,
    request: Request,
    response: Response,
    settings: Settings = Depends(get_app_settings),
    identities: IdentityStore = Depends(get_identity_store),
    sessions: SessionManager = Depends(get_session_manager),
    sms_provider=Depends(get_sms_provider)
):
    """
    Check a one-time code and sign the phone's owner in.
    """
    result = await sms_provider.check_verification_code(body.phone, body.code)
    if isinstance(result, Err):
        _raise_for_verify_failure(result, "SMS", INVALID_CODE_MESSAGE)

    user_id = identities.resolve_or_create_user("phone", body.phone)
    next_path = _start_session(request, response, settings, sessions, user_id)
    return AuthCompleteResponse(next_path=next_path)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    response: Response,
    token: Optional[str] = Depends(get_session_token),
    settings: Settings = Depends(get_app_settings),
    sessions: SessionManager = Depends(get_session_manager)
):
    """
    Revoke the session and clear the cookie in one response.

    Returns success even if session doesn't exist (idempotent).
    """
    if token:
        sessions.revoke(token)

    _clear_session_cookie(response, settings)
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    response: Response,
    user: SessionUser = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    sessions: SessionManager = Depends(get_session_manager)
):
    revoked = sessions.revoke_all(user.user_id)
    _clear_session_cookie(response, settings)
    return MessageResponse(message=f"Signed out of {revoked} sessions")


@router.get("/me", response_model=MeResponse)
async def get_current_user_info(user: SessionUser = Depends(get_current_user)):
    return MeResponse(user_id=user.user_id, profile_display_name=user.profile_display_name)


@router.get("/next", response_model=NextPathResponse)
async def get_next_path(user: Optional[SessionUser] = Depends(get_optional_user)):
    return NextPathResponse(next_path=next_path_for(user))


@router.get("/dev-identities", response_model=DevIdentitiesResponse)
async def dev_identities(
    settings: Settings = Depends(get_app_settings),
    identities: IdentityStore = Depends(get_identity_store)
):
    """
    Recent email identities for the local sign-in picker.
    Disabled unless the local provider is active.
    """
    if not settings.uses_local_provider:
        return DevIdentitiesResponse(enabled=False)

    emails = [
        DevIdentity(
            email=item["email"],
            label=f"{item['display_name']} ({item['email']})" if item["display_name"] else item["email"]
        )
        for item in identities.list_recent_email_identities(12)
    ]
    return DevIdentitiesResponse(enabled=True, emails=emails)
