"""Shared fixtures for auth core tests."""

from unittest.mock import AsyncMock

import pytest

from src.manito.auth.callback_router import CallbackRouter
from src.manito.auth.models import InitializeStarted, NoSessionFound
from src.manito.auth.reconciler import SessionReconciler
from src.manito.auth.state_machine import AuthStateMachine
from src.manito.services.profiles import ProvisioningCoordinator


@pytest.fixture
def machine() -> AuthStateMachine:
    """State machine that has finished initializing with no stored session."""
    machine = AuthStateMachine(max_provisioning_attempts=3)
    machine.dispatch(InitializeStarted())
    machine.dispatch(NoSessionFound())
    return machine


@pytest.fixture
def coordinator(profile_store) -> ProvisioningCoordinator:
    return ProvisioningCoordinator(profile_store)


@pytest.fixture
def reconciler(machine, mock_provider, coordinator) -> SessionReconciler:
    return SessionReconciler(machine, mock_provider, coordinator)


@pytest.fixture
def resolver() -> AsyncMock:
    """Session code resolver double."""
    return AsyncMock()


@pytest.fixture
def router(machine, mock_provider, resolver, reconciler) -> CallbackRouter:
    return CallbackRouter(machine, mock_provider, resolver, reconciler)
