"""Idempotent, race-free profile provisioning."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel

from src.manito.auth.exceptions import AuthRequiredError, ProvisioningFailedError
from src.manito.services.profiles.store import ProfileStore

logger = logging.getLogger(__name__)


class ProvisioningErrorKind(str, Enum):
    AUTH_REQUIRED = "auth_required"  # re-authenticate; do not retry
    PROVISIONING_FAILED = "provisioning_failed"  # retryable


class ProvisioningResult(BaseModel):
    """
    Outcome of one provisioning attempt.

    Attributes:
        success: Whether a profile is known to exist afterwards
        user_id: Identity the attempt ran for
        context: Diagnostic label of the trigger that started the attempt
        profile_id: Profile identifier when the store returns one
        created: True only when this attempt created the record
        error_kind: Failure class when success is False
        error: Failure message when success is False
    """

    success: bool
    user_id: str
    context: str
    profile_id: str | None = None
    created: bool = False
    error_kind: ProvisioningErrorKind | None = None
    error: str | None = None

    @property
    def retryable(self) -> bool:
        return self.error_kind is ProvisioningErrorKind.PROVISIONING_FAILED


class ProvisioningCoordinator:
    """
    Guarantees a backing profile exists for an authenticated identity.

    Concurrent callers for the same user share one in-flight attempt: the
    first caller installs an asyncio.Task in the in-flight map and every other
    caller awaits that task. The entry is removed once the task settles,
    whatever the outcome, so a later call can retry after a failure.

    Lookup and insert happen without an intervening await, which makes the
    get-or-insert atomic on the event loop.

    Example:
        >>> coordinator = ProvisioningCoordinator(store)
        >>> result = await coordinator.ensure(user_id, context="deep-link")
        >>> result.success
        True
    """

    def __init__(self, store: ProfileStore):
        self.store = store
        self._in_flight: dict[str, asyncio.Task[ProvisioningResult]] = {}
        self._confirmed: set[str] = set()

    async def ensure(
        self, user_id: str | None, context: str = "unknown", metadata: dict[str, Any] | None = None
    ) -> ProvisioningResult:
        """
        Ensure a profile exists for `user_id`.

        Never raises for store failures; they come back as a failed result.
        `context` is a diagnostic label and never changes behavior.
        """
        if not user_id:
            logger.error(f"No authenticated user found in context: {context}")
            return ProvisioningResult(
                success=False,
                user_id="",
                context=context,
                error_kind=ProvisioningErrorKind.AUTH_REQUIRED,
                error="No authenticated user",
            )

        if user_id in self._confirmed:
            logger.debug(f"Profile already confirmed for user {user_id} ({context})")
            return ProvisioningResult(success=True, user_id=user_id, context=context)

        task = self._in_flight.get(user_id)
        if task is None or task.done():
            logger.info(f"Ensuring profile via {context} for user {user_id}")
            task = asyncio.ensure_future(self._provision(user_id, context, metadata))
            self._in_flight[user_id] = task
            task.add_done_callback(lambda t, uid=user_id: self._settle(uid, t))
        else:
            logger.info(f"Profile creation already in progress for user {user_id}, waiting ({context})")

        # Shield so a cancelled caller does not cancel the shared attempt
        return await asyncio.shield(task)

    def _settle(self, user_id: str, task: asyncio.Task[ProvisioningResult]) -> None:
        if self._in_flight.get(user_id) is task:
            del self._in_flight[user_id]
        if task.cancelled() or task.exception() is not None:
            return
        if task.result().success:
            self._confirmed.add(user_id)

    async def _provision(
        self, user_id: str, context: str, metadata: dict[str, Any] | None
    ) -> ProvisioningResult:
        try:
            if await self.store.profile_exists(user_id):
                logger.info(f"Profile already exists for user {user_id} via {context}")
                return ProvisioningResult(success=True, user_id=user_id, context=context)

            outcome = await self.store.create_profile(user_id, metadata)
            if outcome.created:
                logger.info(f"Profile created via {context} for user {user_id}")
            else:
                logger.info(f"Profile already exists for user {user_id} via {context} (this is OK)")
            return ProvisioningResult(
                success=True,
                user_id=user_id,
                context=context,
                profile_id=outcome.profile_id,
                created=outcome.created,
            )

        except AuthRequiredError as e:
            logger.warning(f"Profile creation via {context} requires authentication: {e}")
            return ProvisioningResult(
                success=False,
                user_id=user_id,
                context=context,
                error_kind=ProvisioningErrorKind.AUTH_REQUIRED,
                error=str(e),
            )
        except ProvisioningFailedError as e:
            logger.error(
                f"Profile creation failed via {context} for user {user_id}: {e}",
                extra={"code": e.code},
            )
            return ProvisioningResult(
                success=False,
                user_id=user_id,
                context=context,
                error_kind=ProvisioningErrorKind.PROVISIONING_FAILED,
                error=str(e),
            )
        except Exception as e:
            logger.error(f"Unexpected profile creation error via {context}: {e}", exc_info=True)
            return ProvisioningResult(
                success=False,
                user_id=user_id,
                context=context,
                error_kind=ProvisioningErrorKind.PROVISIONING_FAILED,
                error=f"Unexpected error: {e}",
            )

    def reset(self) -> None:
        """Forget confirmed profiles (called on sign-out)."""
        self._confirmed.clear()

    def is_in_flight(self, user_id: str) -> bool:
        task = self._in_flight.get(user_id)
        return task is not None and not task.done()

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)
