from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Optional

from authgate.auth import SESSION_TTL_SECONDS


class Settings(BaseSettings):
    """
    Application configuration loaded from environment variables.
    Uses pydantic for validation and type safety.
    """
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Keys the session token digest
    # Changing this invalidates all existing sessions
    session_secret_key: str

    database_url: str = "sqlite:///./data/authgate.db"

    session_cookie_name: str = "session_token"

    # Cookie security settings
    # secure=True enforces HTTPS only - must be True in production
    cookie_secure: bool = False
    cookie_domain: str = "localhost"

    # Lax allows cookie on normal navigation but blocks on CSRF-prone requests
    cookie_samesite: str = "lax"

    # Peers allowed to report the client address in X-Forwarded-For
    # Empty means the header is ignored and the socket peer is used
    trusted_proxies: List[str] = []

    # "supabase" sends real magic links, "local" logs single-use dev links
    auth_provider: str = "supabase"

    # Origin used to build the magic link callback URL
    # Falls back to the request's own base URL
    public_base_url: Optional[str] = None

    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_verify_service_sid: Optional[str] = None

    # Upper bound on every outbound provider call
    provider_timeout_seconds: float = 10.0

    # Magic link issuance limits
    magic_link_cooldown_seconds: int = 60
    magic_link_window_seconds: int = 15 * 60
    magic_link_max_per_identity: int = 5
    magic_link_max_per_ip: int = 20
    magic_link_retention_seconds: int = 24 * 60 * 60

    dev_magic_link_ttl_seconds: int = 15 * 60

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def session_ttl_seconds(self) -> int:
        # Fixed at seven days; not configurable
        return SESSION_TTL_SECONDS

    @property
    def uses_local_provider(self) -> bool:
        return self.auth_provider.strip().lower() == "local"


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance. Load once, reuse throughout application lifecycle.
    """
    return Settings()
