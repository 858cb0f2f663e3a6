"""Identity provider and change-feed adapters over Supabase."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx
from supabase import AsyncClient
from supabase_auth.errors import AuthError, AuthRetryableError

from src.manito.auth.exceptions import (
    AuthCoreError,
    InvalidCredentialError,
    ResolutionFailedError,
)
from src.manito.auth.models import (
    CredentialPair,
    IdentitySession,
    ProviderEvent,
    ProviderSignedIn,
    ProviderSignedOut,
    ProviderTokenRefreshed,
    ProviderUserUpdated,
    UnrecognizedEvent,
    VerificationChanged,
)

logger = logging.getLogger(__name__)

INVALID_CREDENTIAL_STATUSES = frozenset({400, 401, 403, 404, 422})


@dataclass(frozen=True)
class SignUpOutcome:
    user_id: str
    email: str | None
    session: IdentitySession | None

    @property
    def requires_verification(self) -> bool:
        return self.session is None or not self.session.is_verified


class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


class IdentityProvider(Protocol):
    """Opaque identity provider: session issuance, OTP verification, change feed."""

    async def get_session(self) -> IdentitySession | None: ...

    async def refresh_session(self) -> IdentitySession | None: ...

    async def set_session(self, pair: CredentialPair) -> IdentitySession: ...

    async def verify_otp(self, token_hash: str, otp_type: str) -> IdentitySession | None: ...

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> SignUpOutcome: ...

    async def sign_in_with_password(self, email: str, password: str) -> IdentitySession: ...

    async def sign_out(self) -> None: ...

    async def resend(self, otp_type: str, email: str) -> None: ...

    def on_auth_change(self, callback: Callable[[ProviderEvent], None]) -> Subscription: ...


class ChangeFeed(Protocol):
    """Per-user change-notification feed for verification updates."""

    async def subscribe_verification(
        self, user_id: str, callback: Callable[[VerificationChanged], None]
    ) -> Any: ...

    async def unsubscribe(self, handle: Any) -> None: ...


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


def classify_provider_error(error: Exception) -> AuthCoreError:
    """
    Map a provider failure to the error taxonomy.

    Rate limiting, server errors and network failures are transient; explicit
    4xx rejections mean the credential itself is invalid or expired.
    """
    if isinstance(error, AuthCoreError):
        return error
    if isinstance(error, (AuthRetryableError, httpx.HTTPError)):
        return ResolutionFailedError(f"Identity provider unavailable: {type(error).__name__}")
    if isinstance(error, AuthError):
        status = getattr(error, "status", None)
        if status in INVALID_CREDENTIAL_STATUSES:
            return InvalidCredentialError(error.message or "Invalid or expired credential")
        return ResolutionFailedError(f"Identity provider error (status={status})")
    return ResolutionFailedError(f"Identity provider error: {type(error).__name__}")


def _timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=UTC)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def is_verified_user(user: Any) -> bool:
    """A user is verified once the provider confirmed their email or phone."""
    if user is None:
        return False
    if isinstance(user, dict):
        return bool(user.get("email_confirmed_at") or user.get("phone_confirmed_at"))
    return bool(getattr(user, "email_confirmed_at", None) or getattr(user, "phone_confirmed_at", None))


def session_from_supabase(session: Any) -> IdentitySession | None:
    """Convert a supabase_auth Session into an IdentitySession."""
    if session is None or getattr(session, "user", None) is None:
        return None
    user = session.user
    expires_at = _timestamp(getattr(session, "expires_at", None))
    expires_in = getattr(session, "expires_in", None)
    issued_at = None
    if expires_at is not None and expires_in:
        issued_at = datetime.fromtimestamp(expires_at.timestamp() - int(expires_in), tz=UTC)

    return IdentitySession(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        user_id=str(user.id),
        email=getattr(user, "email", None),
        phone=getattr(user, "phone", None) or None,
        is_verified=is_verified_user(user),
        issued_at=issued_at,
        expires_at=expires_at,
        user_metadata=dict(getattr(user, "user_metadata", None) or {}),
    )


def parse_auth_change(event: str, session: Any) -> ProviderEvent:
    """Translate an auth state change into a typed provider event."""
    if event == "SIGNED_OUT":
        return ProviderSignedOut()

    identity = session_from_supabase(session)
    if identity is None:
        return UnrecognizedEvent(kind=str(event))
    if event == "SIGNED_IN":
        return ProviderSignedIn(session=identity)
    if event == "TOKEN_REFRESHED":
        return ProviderTokenRefreshed(session=identity)
    if event == "USER_UPDATED":
        return ProviderUserUpdated(session=identity)
    return UnrecognizedEvent(kind=str(event))


def parse_verification_change(payload: dict[str, Any], user_id: str) -> ProviderEvent:
    """
    Translate a realtime row-update payload into a VerificationChanged event.

    Accepts both the nested `data.record/old_record` shape and the flat
    `new/old` shape. Anything else is an UnrecognizedEvent.
    """
    if not isinstance(payload, dict):
        return UnrecognizedEvent(kind="invalid_payload")

    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    new = data.get("record") or data.get("new") or {}
    old = data.get("old_record") or data.get("old") or {}
    if not new:
        return UnrecognizedEvent(kind=str(data.get("type", "unknown")))

    return VerificationChanged(
        user_id=str(new.get("id") or user_id),
        was_verified=is_verified_user(old),
        is_verified=is_verified_user(new),
    )


# ---------------------------------------------------------------------------
# Supabase adapters
# ---------------------------------------------------------------------------


class SupabaseIdentityProvider:
    """
    IdentityProvider backed by supabase-py's async auth client.

    Every provider failure is translated through classify_provider_error so
    callers only ever see the auth-core error taxonomy.
    """

    def __init__(self, client: AsyncClient, redirect_url: str):
        self.client = client
        self.redirect_url = redirect_url

    async def get_session(self) -> IdentitySession | None:
        try:
            session = await self.client.auth.get_session()
        except Exception as e:
            raise classify_provider_error(e) from e
        return session_from_supabase(session)

    async def refresh_session(self) -> IdentitySession | None:
        try:
            response = await self.client.auth.refresh_session()
        except Exception as e:
            raise classify_provider_error(e) from e
        return session_from_supabase(response.session)

    async def set_session(self, pair: CredentialPair) -> IdentitySession:
        try:
            response = await self.client.auth.set_session(
                pair.access_token.get_secret_value(), pair.refresh_token.get_secret_value()
            )
        except Exception as e:
            raise classify_provider_error(e) from e
        session = session_from_supabase(response.session)
        if session is None:
            raise InvalidCredentialError("Provider returned no session for credentials")
        return session

    async def verify_otp(self, token_hash: str, otp_type: str) -> IdentitySession | None:
        try:
            response = await self.client.auth.verify_otp(
                {"token_hash": token_hash, "type": otp_type}
            )
        except Exception as e:
            raise classify_provider_error(e) from e
        return session_from_supabase(response.session)

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> SignUpOutcome:
        try:
            response = await self.client.auth.sign_up(
                {
                    "email": email,
                    "password": password,
                    "options": {"data": metadata or {}, "email_redirect_to": self.redirect_url},
                }
            )
        except Exception as e:
            raise classify_provider_error(e) from e
        if response.user is None:
            raise ResolutionFailedError("No user returned from signup")
        return SignUpOutcome(
            user_id=str(response.user.id),
            email=response.user.email,
            session=session_from_supabase(response.session),
        )

    async def sign_in_with_password(self, email: str, password: str) -> IdentitySession:
        try:
            response = await self.client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except Exception as e:
            raise classify_provider_error(e) from e
        session = session_from_supabase(response.session)
        if session is None:
            raise InvalidCredentialError("No session returned from sign in")
        return session

    async def sign_out(self) -> None:
        try:
            await self.client.auth.sign_out()
        except Exception as e:
            raise classify_provider_error(e) from e

    async def resend(self, otp_type: str, email: str) -> None:
        try:
            await self.client.auth.resend(
                {
                    "type": otp_type,
                    "email": email,
                    "options": {"email_redirect_to": self.redirect_url},
                }
            )
        except Exception as e:
            raise classify_provider_error(e) from e

    def on_auth_change(self, callback: Callable[[ProviderEvent], None]) -> Subscription:
        def _listener(event: str, session: Any) -> None:
            callback(parse_auth_change(event, session))

        return self.client.auth.on_auth_state_change(_listener)


class SupabaseChangeFeed:
    """Realtime subscription to UPDATEs of the current user's auth row."""

    def __init__(self, client: AsyncClient):
        self.client = client

    async def subscribe_verification(
        self, user_id: str, callback: Callable[[VerificationChanged], None]
    ) -> Any:
        def _on_change(payload: dict[str, Any]) -> None:
            event = parse_verification_change(payload, user_id)
            if isinstance(event, VerificationChanged):
                callback(event)
            else:
                logger.debug(f"Ignoring change-feed event {event.kind}")

        channel = self.client.channel(f"auth_changes_{user_id}")
        channel.on_postgres_changes(
            "UPDATE",
            schema="auth",
            table="users",
            filter=f"id=eq.{user_id}",
            callback=_on_change,
        )
        try:
            await channel.subscribe()
        except Exception as e:
            raise classify_provider_error(e) from e
        logger.info("Subscribed to verification changes", extra={"user_id": user_id})
        return channel

    async def unsubscribe(self, handle: Any) -> None:
        await self.client.remove_channel(handle)
