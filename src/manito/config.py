"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Supabase credentials and the callback base URL have no defaults: a missing
    value fails validation when the settings are first loaded at startup.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # System Configuration
    debug: bool = False
    cors_origins: str = "https://auth.manito.cl"
    rate_limit_enabled: bool = True
    http_timeout_seconds: float = 10.0

    # Supabase Configuration
    supabase_url: str
    supabase_anon_key: str

    # Deep link / web callback configuration
    auth_callback_base_url: str
    deep_link_scheme: str = "manito"

    # Session codes
    session_code_ttl_seconds: int = 300  # 5 minutes

    # Verification flow
    realtime_enabled: bool = True
    verification_poll_cooldown_seconds: int = 30
    resend_cooldown_seconds: int = 60
    provisioning_max_attempts: int = 3

    # JWT Verification Configuration
    jwks_cache_ttl_seconds: int = 3600  # 1 hour
    jwt_audience: str = "authenticated"
    jwt_leeway_seconds: int = 10  # Clock skew tolerance

    @field_validator("supabase_url", "auth_callback_base_url")
    @classmethod
    def _require_https(cls, value: str) -> str:
        if not value.startswith("https://"):
            raise ValueError(f"Must be a valid HTTPS URL, got: {value!r}")
        return value.rstrip("/")

    @field_validator("supabase_anon_key")
    @classmethod
    def _require_key(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("SUPABASE_ANON_KEY is required")
        return value

    @property
    def auth_redirect_url(self) -> str:
        """Web callback page that email confirmation links redirect to."""
        return f"{self.auth_callback_base_url}/auth/callback"

    @property
    def retrieve_session_url(self) -> str:
        """Companion endpoint that redeems session codes."""
        return f"{self.auth_callback_base_url}/api/retrieve-session"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load settings once per process.

    Raises:
        pydantic.ValidationError: If required configuration is missing or invalid
    """
    return Settings()
