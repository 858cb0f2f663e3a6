"""Canonical auth state and its transition rules."""

from __future__ import annotations

import logging
from collections.abc import Callable

from src.manito.auth.models import (
    AuthEvent,
    AuthState,
    AuthStatus,
    IdentitySession,
    InitializeStarted,
    NoSessionFound,
    ProvisioningFailed,
    ProvisioningSucceeded,
    SessionEstablished,
    SessionRestored,
    SessionRestoreFailed,
    SignedOut,
    SignUpCompleted,
    VerificationObserved,
)

logger = logging.getLogger(__name__)

StateListener = Callable[[AuthState, AuthState, AuthEvent], None]


class AuthStateMachine:
    """
    Owns the current AuthState and applies transitions.

    `dispatch` is the single mutation entry point. It is synchronous and never
    awaits, so on one event loop all mutations are serialized: async
    components await their I/O first and then dispatch the result.

    Each transition builds a whole new AuthState; session, verification and
    provisioning flags are never updated one field at a time. Events that are
    not valid in the current state leave it unchanged.

    Example:
        >>> machine = AuthStateMachine()
        >>> machine.dispatch(InitializeStarted())
        >>> machine.state.status
        <AuthStatus.INITIALIZING: 'initializing'>
    """

    def __init__(self, max_provisioning_attempts: int = 3):
        if max_provisioning_attempts <= 0:
            raise ValueError(
                f"max_provisioning_attempts must be positive, got {max_provisioning_attempts}"
            )
        self.max_provisioning_attempts = max_provisioning_attempts
        self._state = AuthState()
        self._listeners: list[StateListener] = []
        self._handlers: dict[type, Callable[[AuthState, AuthEvent], AuthState]] = {
            InitializeStarted: self._on_initialize_started,
            SessionRestored: self._on_session_restored,
            NoSessionFound: self._on_no_session,
            SessionRestoreFailed: self._on_no_session,
            SignUpCompleted: self._on_sign_up_completed,
            SessionEstablished: self._on_session_established,
            VerificationObserved: self._on_verification_observed,
            ProvisioningSucceeded: self._on_provisioning_succeeded,
            ProvisioningFailed: self._on_provisioning_failed,
            SignedOut: self._on_signed_out,
        }

    @property
    def state(self) -> AuthState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener called after every state change. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def dispatch(self, event: AuthEvent) -> AuthState:
        """Apply an event and return the resulting state."""
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug(f"Ignoring unrecognized auth event {type(event).__name__}")
            return self._state

        previous = self._state
        new_state = handler(previous, event)

        if new_state is previous:
            logger.debug(
                f"Auth event {type(event).__name__} ignored in state {previous.status.value}"
            )
            return previous

        if new_state.status is AuthStatus.READY and not (
            new_state.is_verified and new_state.profile_exists
        ):
            logger.error(
                "Rejected transition to ready without verification and profile",
                extra={"event": type(event).__name__},
            )
            return previous

        self._state = new_state.model_copy(update={"last_event": type(event).__name__})
        if previous.status is not self._state.status:
            logger.info(
                f"Auth state {previous.status.value} -> {self._state.status.value}",
                extra={"event": type(event).__name__, "user_id": self._state.user_id},
            )
        self._notify(previous, self._state, event)
        return self._state

    def _notify(self, previous: AuthState, current: AuthState, event: AuthEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(previous, current, event)
            except Exception as e:
                logger.error(f"Auth state listener failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Transition handlers: (current state, event) -> next state
    # ------------------------------------------------------------------

    def _on_initialize_started(self, state: AuthState, event: InitializeStarted) -> AuthState:
        if state.status is not AuthStatus.ANONYMOUS:
            return state
        return AuthState(status=AuthStatus.INITIALIZING)

    def _on_session_restored(self, state: AuthState, event: SessionRestored) -> AuthState:
        if state.status is not AuthStatus.INITIALIZING:
            return state
        session = event.session
        if session.is_verified and event.profile_exists:
            status = AuthStatus.READY
        elif session.is_verified:
            status = AuthStatus.VERIFIED_UNPROVISIONED
        else:
            status = AuthStatus.AWAITING_VERIFICATION
        return self._with_session(
            session, status, profile_exists=session.is_verified and event.profile_exists
        )

    def _on_no_session(
        self, state: AuthState, event: NoSessionFound | SessionRestoreFailed
    ) -> AuthState:
        if state.status is not AuthStatus.INITIALIZING:
            return state
        return AuthState(status=AuthStatus.ANONYMOUS, is_initialized=True)

    def _on_sign_up_completed(self, state: AuthState, event: SignUpCompleted) -> AuthState:
        if state.status not in (AuthStatus.ANONYMOUS, AuthStatus.ERROR):
            return state
        if event.session is not None and event.session.is_verified:
            return self._with_session(event.session, AuthStatus.VERIFIED_UNPROVISIONED)
        if event.session is not None:
            return self._with_session(event.session, AuthStatus.AWAITING_VERIFICATION)
        return AuthState(
            status=AuthStatus.AWAITING_VERIFICATION,
            user_id=event.user_id,
            email=event.email,
            is_initialized=True,
        )

    def _on_session_established(self, state: AuthState, event: SessionEstablished) -> AuthState:
        if state.status is AuthStatus.INITIALIZING:
            return state
        return self._apply_session(state, event.session)

    def _on_verification_observed(
        self, state: AuthState, event: VerificationObserved
    ) -> AuthState:
        if state.status is AuthStatus.INITIALIZING or not event.session.is_verified:
            return state
        if state.user_id and state.user_id != event.session.user_id and state.status in (
            AuthStatus.AWAITING_VERIFICATION,
            AuthStatus.VERIFIED_UNPROVISIONED,
            AuthStatus.READY,
        ):
            logger.warning("Verification observed for a different identity, ignoring")
            return state
        return self._apply_session(state, event.session)

    def _on_provisioning_succeeded(
        self, state: AuthState, event: ProvisioningSucceeded
    ) -> AuthState:
        if state.user_id != event.user_id or not state.is_verified:
            return state
        if state.status not in (AuthStatus.VERIFIED_UNPROVISIONED, AuthStatus.ERROR):
            return state
        return state.model_copy(
            update={
                "status": AuthStatus.READY,
                "profile_exists": True,
                "error_message": None,
                "provisioning_attempts": 0,
            }
        )

    def _on_provisioning_failed(self, state: AuthState, event: ProvisioningFailed) -> AuthState:
        if state.user_id != event.user_id or state.status is not AuthStatus.VERIFIED_UNPROVISIONED:
            return state
        if event.retryable and event.attempts >= self.max_provisioning_attempts:
            return state.model_copy(
                update={
                    "status": AuthStatus.ERROR,
                    "error_message": event.message,
                    "provisioning_attempts": event.attempts,
                }
            )
        return state.model_copy(
            update={"error_message": event.message, "provisioning_attempts": event.attempts}
        )

    def _on_signed_out(self, state: AuthState, event: SignedOut) -> AuthState:
        logger.info(f"Clearing auth state ({event.reason})", extra={"user_id": state.user_id})
        return AuthState(status=AuthStatus.ANONYMOUS, is_initialized=True)

    # ------------------------------------------------------------------

    def _apply_session(self, state: AuthState, session: IdentitySession) -> AuthState:
        same_user = state.user_id == session.user_id
        if not session.is_verified:
            if same_user and state.is_verified:
                # A stale unverified session never downgrades a verified identity
                return state
            return self._with_session(session, AuthStatus.AWAITING_VERIFICATION)

        profile_exists = same_user and state.profile_exists
        status = AuthStatus.READY if profile_exists else AuthStatus.VERIFIED_UNPROVISIONED
        if same_user and state.status is AuthStatus.ERROR and not profile_exists:
            status = AuthStatus.ERROR
        return self._with_session(
            session,
            status,
            profile_exists=profile_exists,
            error_message=state.error_message if same_user else None,
            provisioning_attempts=state.provisioning_attempts if same_user else 0,
        )

    @staticmethod
    def _with_session(
        session: IdentitySession,
        status: AuthStatus,
        profile_exists: bool = False,
        error_message: str | None = None,
        provisioning_attempts: int = 0,
    ) -> AuthState:
        return AuthState(
            status=status,
            session=session,
            user_id=session.user_id,
            email=session.email,
            is_verified=session.is_verified,
            profile_exists=profile_exists,
            is_initialized=True,
            error_message=error_message,
            provisioning_attempts=provisioning_attempts,
        )
