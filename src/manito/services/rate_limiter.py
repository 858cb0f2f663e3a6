"""Rate limiting for the session-code endpoints."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from src.manito.config import get_settings

# Session codes are redeemed before the caller has a session, so limits are per IP
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri="memory://",
)


class RateLimitTiers:
    """Rate limit tiers for the companion service."""

    # Issuing a code requires a verified access token
    ISSUE = ["30 per minute", "200 per hour"]

    # Redemption is unauthenticated; codes are 256-bit, this only blunts abuse
    RETRIEVE = ["10 per minute", "60 per hour"]


def configure_limiter() -> Limiter:
    """Apply the `rate_limit_enabled` setting and return the shared limiter."""
    limiter.enabled = get_settings().rate_limit_enabled
    return limiter


issue_rate_limit = limiter.limit(";".join(RateLimitTiers.ISSUE))
retrieve_rate_limit = limiter.limit(";".join(RateLimitTiers.RETRIEVE))
