"""Authentication session reconciliation core."""

from src.manito.auth.exceptions import (
    AuthCoreError,
    AuthRequiredError,
    InvalidCredentialError,
    InvalidInputError,
    NotFoundOrExpiredError,
    ProvisioningFailedError,
    ResendCooldownError,
    ResolutionFailedError,
    SessionRestoreCorruptedError,
)
from src.manito.auth.models import AuthState, AuthStatus, CredentialPair, IdentitySession
from src.manito.auth.state_machine import AuthStateMachine
from src.manito.auth.token_extractor import extract_from_url

__all__ = [
    "AuthCoreError",
    "AuthRequiredError",
    "InvalidCredentialError",
    "InvalidInputError",
    "NotFoundOrExpiredError",
    "ProvisioningFailedError",
    "ResendCooldownError",
    "ResolutionFailedError",
    "SessionRestoreCorruptedError",
    "AuthState",
    "AuthStatus",
    "CredentialPair",
    "IdentitySession",
    "AuthStateMachine",
    "extract_from_url",
]
