import re
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, field_validator, model_validator
from pydantic.alias_generators import to_camel

from authgate.identity import normalize_email, normalize_phone
from authgate.profiles import normalize_handle, sanitize_text, DISPLAY_NAME_MAX, BIO_MAX

_CODE_RE = re.compile(r"^\d{4,10}$")


class CamelModel(BaseModel):
    """
    JSON bodies use camelCase keys; Python code uses snake_case.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SendEmailCodeRequest(CamelModel):
    """
    Magic link request.

    EmailStr uses email-validator for RFC-compliant validation; the value
    is trimmed and lowercased first so lookups always see one spelling.
    """
    email: EmailStr

    @field_validator("email", mode="before")
    @classmethod
    def normalize(cls, v):
        if isinstance(v, str):
            return normalize_email(v)
        return v


class CompleteMagicLinkRequest(CamelModel):
    """
    Callback payload. Either the link's token hash or a provider
    access token from the URL fragment.
    """
    token_hash: Optional[str] = None
    type: str = "magiclink"
    access_token: Optional[str] = None

    @model_validator(mode="after")
    def require_token(self):
        if not self.token_hash and not self.access_token:
            raise ValueError("Missing callback token")
        return self


class SendCodeRequest(CamelModel):
    phone: str

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        normalized = normalize_phone(v)
        if not normalized:
            raise ValueError("Enter a valid 10-digit phone number")
        return normalized


class VerifyCodeRequest(SendCodeRequest):
    code: str

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        v = v.strip()
        if not _CODE_RE.match(v):
            raise ValueError("Code must be 4-10 digits")
        return v


class ProfileRequest(CamelModel):
    handle: str
    display_name: str
    bio: Optional[str] = None

    @field_validator("handle")
    @classmethod
    def validate_handle(cls, v: str) -> str:
        handle = normalize_handle(v)
        if not handle:
            raise ValueError("Handle must be 3-20 chars using letters, numbers, or _")
        return handle

    @field_validator("display_name")
    @classmethod
    def validate_display_name(cls, v: str) -> str:
        name = sanitize_text(v, DISPLAY_NAME_MAX)
        if not name:
            raise ValueError("Name is required")
        return name

    @field_validator("bio")
    @classmethod
    def clean_bio(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_text(v, BIO_MAX)


class SendCodeResponse(CamelModel):
    success: bool = True
    dev_mode: Optional[bool] = None
    dev_link: Optional[str] = None


class AuthCompleteResponse(CamelModel):
    success: bool = True
    next_path: str


class NextPathResponse(CamelModel):
    next_path: str


class MeResponse(CamelModel):
    """
    Safe representation of the signed-in user.
    Never includes the session token or its digest.
    """
    user_id: str
    profile_display_name: Optional[str] = None


class DevIdentity(CamelModel):
    email: str
    label: str


class DevIdentitiesResponse(CamelModel):
    enabled: bool
    emails: List[DevIdentity] = []


class ProfileResponse(CamelModel):
    handle: Optional[str] = None
    display_name: str
    bio: Optional[str] = None
    avatar_status: Optional[str] = None


class ProfileSaveResponse(CamelModel):
    success: bool = True
    next_path: str
    avatar_status: str


class MessageResponse(BaseModel):
    """
    Generic message response for operations without specific return data.
    """
    success: bool = True
    message: str
