"""Pytest configuration and shared fixtures."""

import asyncio
import os
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

# Settings are read at import time by the application module
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")
os.environ.setdefault("AUTH_CALLBACK_BASE_URL", "https://auth.manito.test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from src.manito.auth.models import IdentitySession  # noqa: E402
from src.manito.services.profiles.store import CreateProfileOutcome  # noqa: E402


class FakeProfileStore:
    """
    In-memory profile store that yields to the event loop on every call.

    `gate` (an asyncio.Event) holds create_profile open so tests can pile up
    concurrent callers before the first create completes.
    """

    def __init__(self, gate: asyncio.Event | None = None):
        self.profiles: set[str] = set()
        self.exists_calls = 0
        self.create_calls = 0
        self.fail_with: Exception | None = None
        self.gate = gate

    async def profile_exists(self, user_id: str) -> bool:
        self.exists_calls += 1
        await asyncio.sleep(0)
        return user_id in self.profiles

    async def create_profile(
        self, user_id: str, metadata: dict[str, Any] | None = None
    ) -> CreateProfileOutcome:
        self.create_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        created = user_id not in self.profiles
        self.profiles.add(user_id)
        return CreateProfileOutcome(profile_id=f"profile-{user_id}", created=created)


@pytest.fixture
def profile_store() -> FakeProfileStore:
    """Provide an empty in-memory profile store."""
    return FakeProfileStore()


@pytest.fixture
def make_session() -> Callable[..., IdentitySession]:
    """Factory for identity sessions with sensible defaults."""

    def _make(
        user_id: str = "user-123",
        is_verified: bool = True,
        email: str | None = "ana@example.com",
        **kwargs: Any,
    ) -> IdentitySession:
        return IdentitySession(
            access_token=kwargs.pop("access_token", f"access-{user_id}"),
            refresh_token=kwargs.pop("refresh_token", f"refresh-{user_id}"),
            user_id=user_id,
            email=email,
            is_verified=is_verified,
            **kwargs,
        )

    return _make


@pytest.fixture
def mock_provider() -> AsyncMock:
    """
    Identity provider double.

    Async operations are AsyncMocks; `on_auth_change` is synchronous and
    returns a subscription Mock.
    """
    provider = AsyncMock()
    provider.get_session.return_value = None
    provider.refresh_session.return_value = None
    provider.sign_out.return_value = None
    provider.on_auth_change = Mock(return_value=Mock())
    return provider


@pytest.fixture
def token_verifier() -> AsyncMock:
    """Verifier double that accepts any token as user-123."""
    from src.manito.auth.jwt_validator import VerifiedIdentity

    verifier = AsyncMock()
    verifier.verify.return_value = VerifiedIdentity(
        user_id="user-123", email="ana@example.com", expires_at=4102444800
    )
    return verifier


@pytest.fixture
def client(token_verifier: AsyncMock) -> TestClient:
    """
    Provide FastAPI test client with a fresh session-code exchange.

    The lifespan is not entered, so no JWKS fetch happens; the verifier
    double is installed instead.

    Example:
        >>> def test_health(client):
        >>>     response = client.get("/health")
        >>>     assert response.status_code == 200
    """
    from src.manito.auth.dependencies import set_session_code_exchange, set_token_verifier
    from src.manito.main import app

    set_token_verifier(token_verifier)
    set_session_code_exchange(None)
    yield TestClient(app)
    set_token_verifier(None)
    set_session_code_exchange(None)
