"""Issue and resolve single-use session codes."""

import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from urllib.parse import urlencode

from src.manito.auth.exceptions import InvalidInputError, NotFoundOrExpiredError
from src.manito.auth.models import CredentialPair
from src.manito.services.session_codes.store import (
    InMemorySessionCodeStore,
    SessionCodeEntry,
    SessionCodeStore,
)

logger = logging.getLogger(__name__)

SESSION_CODE_BYTES = 32
SESSION_CODE_LENGTH = SESSION_CODE_BYTES * 2  # hex encoded
DEFAULT_TTL_SECONDS = 300


@dataclass(frozen=True)
class IssuedSessionCode:
    code: str
    expires_at: float

    @property
    def expires_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at, tz=UTC)


def validate_code_format(code: str) -> None:
    """
    Reject codes that cannot have been issued.

    Raises:
        InvalidInputError: If the code has the wrong length or characters
    """
    if not isinstance(code, str) or len(code) != SESSION_CODE_LENGTH or not code.isalnum():
        raise InvalidInputError("Invalid session code format")


class SessionCodeExchange:
    """
    Issues short-lived, single-use codes for credential pairs.

    Codes come from `secrets` (CSPRNG) and carry an absolute expiry. Expired
    entries are swept opportunistically on every issuance; resolution enforces
    expiry itself, so no background timer is needed.

    Example:
        >>> exchange = SessionCodeExchange()
        >>> issued = await exchange.issue(pair)
        >>> pair = await exchange.resolve(issued.code)
    """

    def __init__(
        self,
        store: SessionCodeStore | None = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self.store = store if store is not None else InMemorySessionCodeStore()
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    async def issue(self, pair: CredentialPair) -> IssuedSessionCode:
        """Store a credential pair behind a fresh code."""
        now = self._clock()
        await self.store.sweep(now)

        code = secrets.token_hex(SESSION_CODE_BYTES)
        expires_at = now + self.ttl_seconds
        await self.store.put(code, SessionCodeEntry(pair=pair, expires_at=expires_at))

        logger.info(
            "Created secure session code",
            extra={
                "code_length": len(code),
                "expires_at": datetime.fromtimestamp(expires_at, tz=UTC).isoformat(),
                **pair.describe(),
            },
        )
        return IssuedSessionCode(code=code, expires_at=expires_at)

    async def resolve(self, code: str) -> CredentialPair:
        """
        Redeem a code for its credential pair. A code resolves at most once.

        Raises:
            InvalidInputError: If the code format is wrong
            NotFoundOrExpiredError: If the code is unknown, consumed or expired
        """
        validate_code_format(code)

        entry = await self.store.take(code)
        if entry is None:
            logger.info("Session code not found or already consumed")
            raise NotFoundOrExpiredError(reason="not_found")

        if entry.is_expired(self._clock()):
            logger.info("Session code expired")
            raise NotFoundOrExpiredError("Session code expired", reason="expired")

        logger.info("Session code resolved", extra=entry.pair.describe())
        return entry.pair

    async def stats(self) -> dict[str, int]:
        """Active/expired counts for monitoring."""
        now = self._clock()
        entries = await self.store.snapshot()
        expired = sum(1 for entry in entries if entry.is_expired(now))
        return {"active": len(entries) - expired, "expired": expired, "total": len(entries)}


def create_secure_deep_link(
    issued: IssuedSessionCode,
    link_type: str | None = "signup",
    scheme: str = "manito",
    path: str = "auth/callback",
) -> str:
    """
    Build a deep link that carries a session code instead of raw tokens.

    Example:
        >>> create_secure_deep_link(issued)
        'manito://auth/callback?session_code=...&type=signup'
    """
    query = urlencode({"session_code": issued.code, "type": link_type or "signup"})
    return f"{scheme}://{path.strip('/')}?{query}"
