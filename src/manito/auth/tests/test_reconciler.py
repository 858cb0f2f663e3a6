"""Tests for the shared session reconciliation path."""

import pytest

from src.manito.auth.exceptions import ProvisioningFailedError, ResolutionFailedError
from src.manito.auth.models import AuthStatus, SignUpCompleted
from src.manito.auth.reconciler import SessionReconciler
from src.manito.auth.resend import ProvisioningRetryTracker
from src.manito.services.profiles import ProvisioningCoordinator


@pytest.mark.asyncio
class TestSessionReconciler:
    """Tests for SessionReconciler."""

    async def test_verified_session_is_provisioned(self, reconciler, machine, profile_store, make_session):
        result = await reconciler.apply_session(make_session(), source="sign-in")

        assert result.success
        assert machine.state.status is AuthStatus.READY

    async def test_unverified_session_is_not_provisioned(self, reconciler, profile_store, make_session):
        result = await reconciler.apply_session(make_session(is_verified=False), source="sign-in")

        assert result is None
        assert profile_store.exists_calls == 0

    async def test_failures_count_toward_error_threshold(
        self, machine, mock_provider, profile_store, make_session
    ):
        """Test that the third failed attempt puts the state into error."""
        profile_store.fail_with = ProvisioningFailedError("db down")
        retries = ProvisioningRetryTracker()
        reconciler = SessionReconciler(
            machine, mock_provider, ProvisioningCoordinator(profile_store), retries
        )

        await reconciler.apply_session(make_session(), source="deep-link")
        assert machine.state.status is AuthStatus.VERIFIED_UNPROVISIONED
        await reconciler.provision(context="app-focus")
        assert machine.state.provisioning_attempts == 2
        await reconciler.provision(context="app-focus")

        assert machine.state.status is AuthStatus.ERROR
        assert retries.attempts("user-123") == 3

    async def test_error_state_not_provisioned_automatically(
        self, reconciler, machine, profile_store, make_session
    ):
        profile_store.fail_with = ProvisioningFailedError("db down")
        await reconciler.apply_session(make_session(), source="a")
        await reconciler.provision("b")
        await reconciler.provision("c")
        assert machine.state.status is AuthStatus.ERROR
        calls = profile_store.create_calls

        result = await reconciler.apply_session(make_session(), source="token-refresh")

        assert result is None
        assert profile_store.create_calls == calls

    async def test_retry_provisioning_recovers_from_error(
        self, reconciler, machine, profile_store, make_session
    ):
        profile_store.fail_with = ProvisioningFailedError("db down")
        await reconciler.apply_session(make_session(), source="a")
        await reconciler.provision("b")
        await reconciler.provision("c")
        profile_store.fail_with = None

        outcome = await reconciler.retry_provisioning()

        assert outcome.result.success
        assert outcome.attempts == 0
        assert machine.state.status is AuthStatus.READY

    async def test_observe_verification_ignores_unverified(self, reconciler, machine, make_session):
        machine.dispatch(SignUpCompleted(user_id="user-123"))

        result = await reconciler.observe_verification(make_session(is_verified=False), "poll")

        assert result is None
        assert machine.state.status is AuthStatus.AWAITING_VERIFICATION

    async def test_sign_out_is_local_first(self, reconciler, machine, mock_provider, make_session):
        """Test that a failed provider sign-out still leaves the user signed out locally."""
        await reconciler.apply_session(make_session(), source="sign-in")
        mock_provider.sign_out.side_effect = ResolutionFailedError("offline")

        await reconciler.sign_out()

        assert machine.state.status is AuthStatus.ANONYMOUS
        assert reconciler.coordinator.in_flight_count == 0


class TestProvisioningRetryTracker:
    """Tests for failure counting."""

    def test_shared_result_counted_once(self):
        from src.manito.services.profiles import ProvisioningErrorKind, ProvisioningResult

        tracker = ProvisioningRetryTracker()
        result = ProvisioningResult(
            success=False,
            user_id="u",
            context="x",
            error_kind=ProvisioningErrorKind.PROVISIONING_FAILED,
        )

        tracker.record_failure("u", result)
        tracker.record_failure("u", result)

        assert tracker.attempts("u") == 1

    def test_success_resets(self):
        from src.manito.services.profiles import ProvisioningResult

        tracker = ProvisioningRetryTracker()
        tracker.record_failure("u", ProvisioningResult(success=False, user_id="u", context="x"))
        tracker.record_success("u")

        assert tracker.attempts("u") == 0
