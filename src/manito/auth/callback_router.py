"""Route inbound auth links to the right credential exchange."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from src.manito.auth.exceptions import (
    InvalidCredentialError,
    InvalidInputError,
    NotFoundOrExpiredError,
    ResolutionFailedError,
)
from src.manito.auth.models import AuthState, AuthStatus, CredentialPair, IdentitySession
from src.manito.auth.provider import IdentityProvider
from src.manito.auth.reconciler import SessionReconciler
from src.manito.auth.state_machine import AuthStateMachine
from src.manito.auth.token_extractor import (
    DirectTokens,
    ExtractedCredentials,
    NoCredentials,
    OtpHash,
    SessionCode,
    extract_credentials,
    extract_link_error,
    parse_link,
)

logger = logging.getLogger(__name__)


class SessionCodeResolver(Protocol):
    async def resolve(self, code: str) -> CredentialPair: ...


class CallbackOutcome(str, Enum):
    COMPLETED = "completed"
    PENDING_VERIFICATION = "pending_verification"
    PROVISIONING_FAILED = "provisioning_failed"
    NO_SESSION = "no_session"
    IGNORED = "ignored"
    NOT_INITIALIZED = "not_initialized"
    INVALID_INPUT = "invalid_input"
    LINK_EXPIRED = "link_expired"
    RESOLUTION_FAILED = "resolution_failed"
    INVALID_CREDENTIAL = "invalid_credential"
    PROVIDER_ERROR = "provider_error"


@dataclass(frozen=True)
class CallbackResult:
    outcome: CallbackOutcome
    state: AuthState
    detail: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome is CallbackOutcome.COMPLETED


class CallbackRouter:
    """
    Handles inbound deep links and universal links.

    Failures are reported as a CallbackResult and leave the auth state as it
    was. The only exception is an explicit invalid/expired credential response
    from the identity provider, which signs the user out.
    """

    def __init__(
        self,
        machine: AuthStateMachine,
        provider: IdentityProvider,
        resolver: SessionCodeResolver,
        reconciler: SessionReconciler,
    ):
        self.machine = machine
        self.provider = provider
        self.resolver = resolver
        self.reconciler = reconciler

    async def handle(self, url: str) -> CallbackResult:
        """Process one inbound link end to end."""
        try:
            link = parse_link(url)
        except InvalidInputError:
            return self._result(CallbackOutcome.INVALID_INPUT, "Invalid link")

        link_error = extract_link_error(link)
        if link.is_auth_error or link_error is not None:
            error_code = link_error.error if link_error else "unknown"
            logger.error("Auth error link received", extra={"error_code": error_code})
            return self._result(
                CallbackOutcome.PROVIDER_ERROR,
                (link_error.description or link_error.error) if link_error else None,
            )

        if not link.is_auth_callback:
            logger.info("Non-auth link, ignoring")
            return self._result(CallbackOutcome.IGNORED)

        if self.machine.state.status is AuthStatus.INITIALIZING:
            # Credentials stay unconsumed so the link can be retried after restore
            logger.warning("Auth link received before session restore finished")
            return self._result(CallbackOutcome.NOT_INITIALIZED)

        credentials = extract_credentials(link)
        kind = type(credentials).__name__

        try:
            session = await self._establish(credentials)
        except InvalidInputError as e:
            return self._result(CallbackOutcome.INVALID_INPUT, str(e))
        except NotFoundOrExpiredError as e:
            logger.info(f"Session code unusable ({e.reason})")
            return self._result(CallbackOutcome.LINK_EXPIRED, str(e))
        except ResolutionFailedError as e:
            logger.warning(f"Transient failure handling {kind} link: {e}")
            return self._result(CallbackOutcome.RESOLUTION_FAILED, str(e))
        except InvalidCredentialError as e:
            logger.warning(f"Identity provider rejected {kind} credentials")
            await self.reconciler.sign_out(reason="invalid_credential")
            return self._result(CallbackOutcome.INVALID_CREDENTIAL, str(e))

        if session is None:
            logger.warning("No session found after link processing")
            return self._result(CallbackOutcome.NO_SESSION)

        result = await self.reconciler.apply_session(session, source=f"deep-link:{kind}")

        status = self.machine.state.status
        if status is AuthStatus.READY:
            return self._result(CallbackOutcome.COMPLETED)
        if status is AuthStatus.AWAITING_VERIFICATION:
            return self._result(CallbackOutcome.PENDING_VERIFICATION)
        return self._result(
            CallbackOutcome.PROVISIONING_FAILED, result.error if result is not None else None
        )

    async def _establish(self, credentials: ExtractedCredentials) -> IdentitySession | None:
        if isinstance(credentials, SessionCode):
            pair = await self.resolver.resolve(credentials.code)
            return await self.provider.set_session(pair)

        if isinstance(credentials, DirectTokens):
            return await self.provider.set_session(credentials.pair)

        if isinstance(credentials, OtpHash):
            return await self.provider.verify_otp(
                credentials.token_hash.get_secret_value(), credentials.type
            )

        if isinstance(credentials, NoCredentials):
            # Verification may already be complete server-side
            session = await self.provider.get_session()
            if session is not None and not session.is_verified:
                session = await self.provider.refresh_session() or session
            return session

        raise InvalidInputError(f"Unsupported credentials: {type(credentials).__name__}")

    def _result(self, outcome: CallbackOutcome, detail: str | None = None) -> CallbackResult:
        return CallbackResult(outcome=outcome, state=self.machine.state, detail=detail)
