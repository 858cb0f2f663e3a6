"""Shared path from an established session to a provisioned, ready state."""

import logging

from src.manito.auth.exceptions import AuthCoreError
from src.manito.auth.models import (
    AuthStatus,
    IdentitySession,
    ProvisioningFailed,
    ProvisioningSucceeded,
    SessionEstablished,
    SignedOut,
    VerificationObserved,
)
from src.manito.auth.provider import IdentityProvider
from src.manito.auth.resend import ProvisioningRetryTracker, RetryOutcome
from src.manito.auth.state_machine import AuthStateMachine
from src.manito.services.profiles import ProvisioningCoordinator, ProvisioningResult

logger = logging.getLogger(__name__)


class SessionReconciler:
    """
    Applies sessions to the state machine and provisions verified identities.

    The callback router, the verification watcher and the runtime all go
    through here, so every trigger converges on the same deduplicated
    `ensure` call and the same dispatches.
    """

    def __init__(
        self,
        machine: AuthStateMachine,
        provider: IdentityProvider,
        coordinator: ProvisioningCoordinator,
        retries: ProvisioningRetryTracker | None = None,
    ):
        self.machine = machine
        self.provider = provider
        self.coordinator = coordinator
        self.retries = retries or ProvisioningRetryTracker()

    async def apply_session(
        self, session: IdentitySession, source: str
    ) -> ProvisioningResult | None:
        """
        Apply a freshly established session and provision it if verified.

        Returns the provisioning result, or None when no attempt was needed.
        """
        state = self.machine.state
        if session.is_verified and state.status is AuthStatus.AWAITING_VERIFICATION:
            self.machine.dispatch(VerificationObserved(session=session, source=source))
        else:
            self.machine.dispatch(SessionEstablished(session=session, source=source))
        return await self._provision_if_needed(session, source)

    async def observe_verification(
        self, session: IdentitySession, source: str
    ) -> ProvisioningResult | None:
        """Record an out-of-band verification and provision the identity."""
        if not session.is_verified:
            return None
        self.machine.dispatch(VerificationObserved(session=session, source=source))
        return await self._provision_if_needed(session, source)

    async def provision(self, context: str) -> ProvisioningResult:
        """Run one deduplicated provisioning attempt for the current identity."""
        state = self.machine.state
        metadata = state.session.user_metadata if state.session else None
        result = await self.coordinator.ensure(state.user_id, context=context, metadata=metadata)
        self.record_result(result)
        return result

    def record_result(self, result: ProvisioningResult) -> None:
        """Dispatch the outcome of a provisioning attempt, counting failures once."""
        if result.success:
            self.retries.record_success(result.user_id)
            self.machine.dispatch(
                ProvisioningSucceeded(user_id=result.user_id, profile_id=result.profile_id)
            )
        elif result.user_id:
            attempts = self.retries.record_failure(result.user_id, result)
            self.machine.dispatch(
                ProvisioningFailed(
                    user_id=result.user_id,
                    message=result.error or "Profile creation failed",
                    attempts=attempts,
                    retryable=result.retryable,
                )
            )

    async def retry_provisioning(self) -> RetryOutcome:
        """User-initiated retry after a shown failure."""
        result = await self.provision(context="user-retry")
        return RetryOutcome(result=result, attempts=self.retries.attempts(result.user_id))

    async def sign_out(self, reason: str = "sign_out") -> None:
        """
        Clear local state, then end the provider session.

        The local transition happens first and is not undone if the provider
        call fails.
        """
        self.coordinator.reset()
        self.retries.reset()
        self.machine.dispatch(SignedOut(reason=reason))
        try:
            await self.provider.sign_out()
        except AuthCoreError as e:
            logger.warning(f"Provider sign out failed ({reason}): {e}")

    async def _provision_if_needed(
        self, session: IdentitySession, source: str
    ) -> ProvisioningResult | None:
        state = self.machine.state
        if state.user_id != session.user_id or not state.is_verified:
            return None
        if state.status is not AuthStatus.VERIFIED_UNPROVISIONED:
            return None
        logger.info(f"Verified identity via {source}, ensuring profile")
        return await self.provision(context=source)
