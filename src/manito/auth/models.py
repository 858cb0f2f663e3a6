"""Data models for authentication session reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, SecretStr

from src.manito.auth.utils import describe_secret


class AuthStatus(str, Enum):
    """Tagged states of the auth state machine."""

    ANONYMOUS = "anonymous"
    INITIALIZING = "initializing"
    AWAITING_VERIFICATION = "awaiting_verification"
    VERIFIED_UNPROVISIONED = "verified_unprovisioned"
    READY = "ready"
    ERROR = "error"


class CredentialPair(BaseModel):
    """
    Access/refresh token pair carried by a callback link or a session code.

    Transient: held only long enough to exchange it for an identity session.
    Token values are SecretStr so they never appear in reprs or log lines.
    """

    model_config = ConfigDict(frozen=True)

    access_token: SecretStr
    refresh_token: SecretStr
    type: str | None = None

    def describe(self) -> dict[str, Any]:
        """Loggable summary (presence and length only)."""
        return {
            "access_token": describe_secret(self.access_token),
            "refresh_token": describe_secret(self.refresh_token),
            "type": self.type,
        }


class IdentitySession(BaseModel):
    """
    One authenticated principal.

    Owned by the auth state machine and replaced wholesale on every transition.

    Attributes:
        access_token: Opaque session handle issued by the identity provider
        refresh_token: Token used to renew the session
        user_id: Provider user identifier
        email: Email used at sign-up (if any)
        phone: Phone used at sign-up (if any)
        is_verified: Whether the provider has confirmed the email/phone
        issued_at: When the session was issued
        expires_at: When the access token expires
        user_metadata: Sign-up metadata (full_name, user_type, ...)
    """

    model_config = ConfigDict(frozen=True)

    access_token: SecretStr
    refresh_token: SecretStr
    user_id: str
    email: str | None = None
    phone: str | None = None
    is_verified: bool = False
    issued_at: datetime | None = None
    expires_at: datetime | None = None
    user_metadata: dict[str, Any] = {}

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class AuthState(BaseModel):
    """
    Snapshot of the canonical auth state.

    Every transition produces a new snapshot so readers always observe session,
    verification and provisioning flags together.
    """

    model_config = ConfigDict(frozen=True)

    status: AuthStatus = AuthStatus.ANONYMOUS
    session: IdentitySession | None = None
    user_id: str | None = None
    email: str | None = None
    is_verified: bool = False
    profile_exists: bool = False
    is_initialized: bool = False
    last_event: str | None = None
    error_message: str | None = None
    provisioning_attempts: int = 0


# ---------------------------------------------------------------------------
# State machine events (single mutation entry point inputs)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InitializeStarted:
    """App start: the last-known session is being restored."""


@dataclass(frozen=True)
class SessionRestored:
    """A stored session was restored during initialization."""

    session: IdentitySession
    profile_exists: bool = False


@dataclass(frozen=True)
class NoSessionFound:
    """Initialization found no stored session."""


@dataclass(frozen=True)
class SessionRestoreFailed:
    """The stored session could not be restored or refreshed."""


@dataclass(frozen=True)
class SignUpCompleted:
    """Sign-up succeeded; the provider may require verification first."""

    user_id: str
    email: str | None = None
    session: IdentitySession | None = None


@dataclass(frozen=True)
class SessionEstablished:
    """A live session was applied (callback link, sign-in or auth feed)."""

    session: IdentitySession
    source: str = "unknown"


@dataclass(frozen=True)
class VerificationObserved:
    """The provider reports the identity as verified."""

    session: IdentitySession
    source: str = "unknown"


@dataclass(frozen=True)
class ProvisioningSucceeded:
    user_id: str
    profile_id: str | None = None


@dataclass(frozen=True)
class ProvisioningFailed:
    user_id: str
    message: str
    attempts: int = 1
    retryable: bool = True


@dataclass(frozen=True)
class SignedOut:
    reason: str = "sign_out"


AuthEvent = (
    InitializeStarted
    | SessionRestored
    | NoSessionFound
    | SessionRestoreFailed
    | SignUpCompleted
    | SessionEstablished
    | VerificationObserved
    | ProvisioningSucceeded
    | ProvisioningFailed
    | SignedOut
)


# ---------------------------------------------------------------------------
# Identity provider events (only the fields this core reads)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderSignedIn:
    session: IdentitySession


@dataclass(frozen=True)
class ProviderTokenRefreshed:
    session: IdentitySession


@dataclass(frozen=True)
class ProviderUserUpdated:
    session: IdentitySession


@dataclass(frozen=True)
class ProviderSignedOut:
    pass


@dataclass(frozen=True)
class VerificationChanged:
    """Change-feed row update for a user's verification timestamps."""

    user_id: str
    was_verified: bool
    is_verified: bool

    @property
    def became_verified(self) -> bool:
        return self.is_verified and not self.was_verified


@dataclass(frozen=True)
class UnrecognizedEvent:
    kind: str
    details: dict[str, Any] = field(default_factory=dict)


ProviderEvent = (
    ProviderSignedIn
    | ProviderTokenRefreshed
    | ProviderUserUpdated
    | ProviderSignedOut
    | VerificationChanged
    | UnrecognizedEvent
)
