import logging

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

INVALID_LINK_MESSAGE = "Invalid or expired link"
INVALID_CODE_MESSAGE = "Invalid or expired code"


class IdentityConflictError(Exception):
    """Identity insert lost a uniqueness race but the winner's row is missing."""
    pass


class RateLimitExceededError(HTTPException):
    def __init__(self, retry_after_seconds: int, reason: str, message: str = None):
        self.retry_after_seconds = retry_after_seconds
        self.reason = reason
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=message or f"Too many attempts. Try again in {retry_after_seconds}s.",
            headers={"Retry-After": str(retry_after_seconds)}
        )


class InvalidCredentialError(HTTPException):
    """
    Expired, consumed, denied and unknown credentials all end up here
    with the same message.
    """
    def __init__(self, message: str = INVALID_LINK_MESSAGE):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=message)


class ProviderFailureError(HTTPException):
    def __init__(self, status_code: int, message: str):
        super().__init__(status_code=status_code, detail=message)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500:
        logger.warning("HTTP %s: %s - %s", exc.status_code, exc.detail, request.url.path)

    content = {"error": exc.detail}
    if isinstance(exc, RateLimitExceededError):
        content["retryAfterSeconds"] = exc.retry_after_seconds
        content["reason"] = exc.reason

    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Report the first problem as a readable sentence rather than
    pydantic's error list.
    """
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        message = str(first.get("msg", message))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        if first.get("type") == "missing" and field:
            message = f"{field} is required"

    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


async def general_exception_handler(request: Request, exc: Exception):
    logger.error("Unexpected error on %s: %s", request.url.path, exc, exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"}
    )


def register_exception_handlers(app):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
