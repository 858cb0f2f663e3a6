"""Verification-email resend throttling and provisioning retry accounting."""

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from src.manito.auth.exceptions import AuthCoreError, ResendCooldownError
from src.manito.auth.provider import IdentityProvider
from src.manito.services.profiles import ProvisioningResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResendResult:
    """
    Outcome of a resend request.

    `remaining_seconds` is the cooldown left: when rejected, how long until a
    resend is allowed; when sent, the length of the new cooldown.
    """

    sent: bool
    remaining_seconds: int = 0
    error: str | None = None


class ResendController:
    """
    Throttles verification-email resends with a cooldown window.

    A successful resend starts the cooldown; a failed one does not, so the
    user can try again immediately.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        cooldown_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._cooldown_until: float | None = None
        self._in_progress = False

    def remaining_seconds(self) -> int:
        if self._cooldown_until is None:
            return 0
        return max(0, math.ceil(self._cooldown_until - self._clock()))

    def ensure_available(self) -> None:
        """
        Raises:
            ResendCooldownError: While the cooldown window is active
        """
        remaining = self.remaining_seconds()
        if remaining > 0:
            raise ResendCooldownError(remaining)

    async def resend(self, email: str | None, otp_type: str = "signup") -> ResendResult:
        """Request a new verification email unless the cooldown is active."""
        try:
            self.ensure_available()
        except ResendCooldownError as e:
            logger.info(f"Resend rejected, cooldown active ({e.remaining_seconds}s left)")
            return ResendResult(sent=False, remaining_seconds=e.remaining_seconds)

        if not email:
            return ResendResult(sent=False, error="No email address to resend to")
        if self._in_progress:
            return ResendResult(sent=False, error="Resend already in progress")

        self._in_progress = True
        try:
            await self.provider.resend(otp_type, email)
        except AuthCoreError as e:
            logger.warning(f"Resend verification failed: {e}", extra={"error_type": type(e).__name__})
            return ResendResult(sent=False, error=str(e))
        finally:
            self._in_progress = False

        self._cooldown_until = self._clock() + self.cooldown_seconds
        logger.info("Verification email resent")
        return ResendResult(sent=True, remaining_seconds=self.cooldown_seconds)


@dataclass(frozen=True)
class RetryOutcome:
    """Provisioning result plus the failure count the presentation layer decides on."""

    result: ProvisioningResult
    attempts: int


class ProvisioningRetryTracker:
    """
    Counts failed provisioning attempts per user.

    Callers that shared one deduplicated attempt receive the same result
    object; it is counted once.
    """

    def __init__(self) -> None:
        self._attempts: dict[str, int] = {}
        self._last_counted: dict[str, ProvisioningResult] = {}

    def record_failure(self, user_id: str, result: ProvisioningResult) -> int:
        if self._last_counted.get(user_id) is result:
            return self._attempts.get(user_id, 0)
        self._last_counted[user_id] = result
        self._attempts[user_id] = self._attempts.get(user_id, 0) + 1
        return self._attempts[user_id]

    def record_success(self, user_id: str) -> None:
        self._attempts.pop(user_id, None)
        self._last_counted.pop(user_id, None)

    def attempts(self, user_id: str) -> int:
        return self._attempts.get(user_id, 0)

    def reset(self) -> None:
        self._attempts.clear()
        self._last_counted.clear()
