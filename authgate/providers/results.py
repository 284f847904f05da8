"""
Tagged results returned by the external delivery/verification providers.

Providers never raise for expected failures; callers branch on
isinstance(result, Err) and on result.kind.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class ProviderErrorKind(str, Enum):
    # Missing credentials or URL; nothing the user can do about it
    CONFIG = "config"
    RATE_LIMITED = "rate_limited"
    # Timeouts and transport errors
    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"
    # Wrong, expired or already used code/link; the user has to start over
    DENIED = "denied"

    @property
    def retryable(self) -> bool:
        return self in (ProviderErrorKind.RATE_LIMITED, ProviderErrorKind.UNAVAILABLE, ProviderErrorKind.REJECTED)


@dataclass(frozen=True)
class Ok:
    email: Optional[str] = None
    # Set only by the local provider: the link it would have emailed
    dev_link: Optional[str] = None


@dataclass(frozen=True)
class Err:
    kind: ProviderErrorKind
    message: str


ProviderResult = Union[Ok, Err]
