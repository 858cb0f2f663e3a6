"""Tests for the auth state machine."""

import pytest

from src.manito.auth.models import (
    AuthStatus,
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
from src.manito.auth.state_machine import AuthStateMachine


@pytest.fixture
def machine() -> AuthStateMachine:
    return AuthStateMachine(max_provisioning_attempts=3)


def initialized(machine: AuthStateMachine) -> AuthStateMachine:
    machine.dispatch(InitializeStarted())
    machine.dispatch(NoSessionFound())
    return machine


class TestInitialization:
    """Tests for startup transitions."""

    def test_starts_anonymous_uninitialized(self, machine):
        assert machine.state.status is AuthStatus.ANONYMOUS
        assert not machine.state.is_initialized

    def test_no_session_goes_anonymous(self, machine):
        machine.dispatch(InitializeStarted())
        assert machine.state.status is AuthStatus.INITIALIZING

        state = machine.dispatch(NoSessionFound())

        assert state.status is AuthStatus.ANONYMOUS
        assert state.is_initialized

    def test_restore_failure_goes_anonymous(self, machine):
        machine.dispatch(InitializeStarted())

        state = machine.dispatch(SessionRestoreFailed())

        assert state.status is AuthStatus.ANONYMOUS
        assert state.session is None

    @pytest.mark.parametrize(
        ("is_verified", "profile_exists", "expected"),
        [
            (True, True, AuthStatus.READY),
            (True, False, AuthStatus.VERIFIED_UNPROVISIONED),
            (False, False, AuthStatus.AWAITING_VERIFICATION),
            (False, True, AuthStatus.AWAITING_VERIFICATION),
        ],
    )
    def test_restored_session(self, machine, make_session, is_verified, profile_exists, expected):
        """Test the status derived from a restored session."""
        machine.dispatch(InitializeStarted())

        state = machine.dispatch(
            SessionRestored(session=make_session(is_verified=is_verified), profile_exists=profile_exists)
        )

        assert state.status is expected
        assert state.is_initialized
        if expected is AuthStatus.READY:
            assert state.is_verified and state.profile_exists

    def test_session_events_ignored_while_initializing(self, machine, make_session):
        """Test that callbacks do not race the initial restore."""
        machine.dispatch(InitializeStarted())

        state = machine.dispatch(SessionEstablished(session=make_session()))

        assert state.status is AuthStatus.INITIALIZING


class TestSessionTransitions:
    """Tests for sessions established after startup."""

    def test_signup_without_session_awaits_verification(self, machine):
        initialized(machine)

        state = machine.dispatch(SignUpCompleted(user_id="user-1", email="ana@example.com"))

        assert state.status is AuthStatus.AWAITING_VERIFICATION
        assert state.user_id == "user-1"
        assert state.session is None

    def test_verification_observed_moves_to_unprovisioned(self, machine, make_session):
        initialized(machine)
        machine.dispatch(SignUpCompleted(user_id="user-123", email="ana@example.com"))

        state = machine.dispatch(VerificationObserved(session=make_session(), source="realtime"))

        assert state.status is AuthStatus.VERIFIED_UNPROVISIONED
        assert state.is_verified
        assert not state.profile_exists

    def test_verification_for_other_user_ignored(self, machine, make_session):
        initialized(machine)
        machine.dispatch(SignUpCompleted(user_id="user-1", email="ana@example.com"))

        state = machine.dispatch(VerificationObserved(session=make_session(user_id="user-2")))

        assert state.status is AuthStatus.AWAITING_VERIFICATION
        assert state.user_id == "user-1"

    def test_stale_unverified_session_does_not_downgrade(self, machine, make_session):
        """Test that verification is never lost to a stale session."""
        initialized(machine)
        machine.dispatch(SessionEstablished(session=make_session()))

        state = machine.dispatch(SessionEstablished(session=make_session(is_verified=False)))

        assert state.status is AuthStatus.VERIFIED_UNPROVISIONED
        assert state.is_verified

    def test_provisioning_success_reaches_ready(self, machine, make_session):
        initialized(machine)
        machine.dispatch(SessionEstablished(session=make_session()))

        state = machine.dispatch(ProvisioningSucceeded(user_id="user-123", profile_id="p-1"))

        assert state.status is AuthStatus.READY
        assert state.profile_exists
        assert state.last_event == "ProvisioningSucceeded"

    def test_ready_is_kept_on_token_refresh(self, machine, make_session):
        initialized(machine)
        machine.dispatch(SessionEstablished(session=make_session()))
        machine.dispatch(ProvisioningSucceeded(user_id="user-123"))

        state = machine.dispatch(SessionEstablished(session=make_session(access_token="new")))

        assert state.status is AuthStatus.READY
        assert state.session.access_token.get_secret_value() == "new"

    def test_provisioning_success_requires_verification(self, machine):
        """Test that an unverified identity can never become ready."""
        initialized(machine)
        machine.dispatch(SignUpCompleted(user_id="user-123"))

        state = machine.dispatch(ProvisioningSucceeded(user_id="user-123"))

        assert state.status is AuthStatus.AWAITING_VERIFICATION

    def test_provisioning_success_for_other_user_ignored(self, machine, make_session):
        initialized(machine)
        machine.dispatch(SessionEstablished(session=make_session()))

        state = machine.dispatch(ProvisioningSucceeded(user_id="someone-else"))

        assert state.status is AuthStatus.VERIFIED_UNPROVISIONED


class TestProvisioningFailures:
    """Tests for failure accounting."""

    def test_failures_below_threshold_stay_unprovisioned(self, machine, make_session):
        initialized(machine)
        machine.dispatch(SessionEstablished(session=make_session()))

        state = machine.dispatch(ProvisioningFailed(user_id="user-123", message="db", attempts=2))

        assert state.status is AuthStatus.VERIFIED_UNPROVISIONED
        assert state.provisioning_attempts == 2
        assert state.error_message == "db"

    def test_threshold_enters_error(self, machine, make_session):
        initialized(machine)
        machine.dispatch(SessionEstablished(session=make_session()))

        state = machine.dispatch(ProvisioningFailed(user_id="user-123", message="db", attempts=3))

        assert state.status is AuthStatus.ERROR

    def test_non_retryable_failure_does_not_enter_error(self, machine, make_session):
        initialized(machine)
        machine.dispatch(SessionEstablished(session=make_session()))

        state = machine.dispatch(
            ProvisioningFailed(user_id="user-123", message="auth", attempts=5, retryable=False)
        )

        assert state.status is AuthStatus.VERIFIED_UNPROVISIONED

    def test_retry_success_leaves_error(self, machine, make_session):
        initialized(machine)
        machine.dispatch(SessionEstablished(session=make_session()))
        machine.dispatch(ProvisioningFailed(user_id="user-123", message="db", attempts=3))

        state = machine.dispatch(ProvisioningSucceeded(user_id="user-123"))

        assert state.status is AuthStatus.READY
        assert state.error_message is None
        assert state.provisioning_attempts == 0

    def test_error_survives_token_refresh(self, machine, make_session):
        initialized(machine)
        machine.dispatch(SessionEstablished(session=make_session()))
        machine.dispatch(ProvisioningFailed(user_id="user-123", message="db", attempts=3))

        state = machine.dispatch(SessionEstablished(session=make_session()))

        assert state.status is AuthStatus.ERROR


class TestSignOutAndListeners:
    """Tests for sign-out and subscriptions."""

    def test_sign_out_clears_everything(self, machine, make_session):
        initialized(machine)
        machine.dispatch(SessionEstablished(session=make_session()))
        machine.dispatch(ProvisioningSucceeded(user_id="user-123"))

        state = machine.dispatch(SignedOut())

        assert state.status is AuthStatus.ANONYMOUS
        assert state.session is None
        assert state.user_id is None
        assert not state.is_verified and not state.profile_exists
        assert state.is_initialized

    def test_listener_receives_transitions_and_unsubscribes(self, machine):
        seen = []
        unsubscribe = machine.subscribe(lambda prev, cur, event: seen.append((prev.status, cur.status)))

        machine.dispatch(InitializeStarted())
        unsubscribe()
        machine.dispatch(NoSessionFound())

        assert seen == [(AuthStatus.ANONYMOUS, AuthStatus.INITIALIZING)]

    def test_ignored_event_does_not_notify(self, machine):
        seen = []
        machine.subscribe(lambda prev, cur, event: seen.append(event))

        machine.dispatch(NoSessionFound())

        assert seen == []

    def test_failing_listener_does_not_break_dispatch(self, machine):
        def broken(prev, cur, event):
            raise RuntimeError("listener bug")

        machine.subscribe(broken)

        state = machine.dispatch(InitializeStarted())

        assert state.status is AuthStatus.INITIALIZING

    def test_invalid_threshold_rejected(self):
        with pytest.raises(ValueError):
            AuthStateMachine(max_provisioning_attempts=0)
