"""Error taxonomy for authentication session reconciliation."""


class AuthCoreError(Exception):
    """Base exception for all auth-core errors."""

    pass


class InvalidInputError(AuthCoreError):
    """Raised for malformed links or wrong-length session codes. No side effects."""

    pass


class NotFoundOrExpiredError(AuthCoreError):
    """Raised when a session code is unknown, already consumed or expired."""

    def __init__(self, message: str = "Session code not found or expired", reason: str = "not_found"):
        super().__init__(message)
        self.reason = reason


class ResolutionFailedError(AuthCoreError):
    """Raised on transient network/service failures. Safe to retry; state unchanged."""

    pass


class InvalidCredentialError(AuthCoreError):
    """Raised when the identity provider explicitly rejects a credential as invalid or expired."""

    pass


class AuthRequiredError(AuthCoreError):
    """Raised when provisioning runs without an authenticated caller."""

    pass


class ProvisioningFailedError(AuthCoreError):
    """Raised for record-store failures other than 'already exists'. Retryable."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


class SessionRestoreCorruptedError(AuthCoreError):
    """Raised when a stored session fails to restore or refresh."""

    pass


class ResendCooldownError(AuthCoreError):
    """Raised when a verification resend is requested during the cooldown window."""

    def __init__(self, remaining_seconds: int):
        super().__init__(f"Resend available in {remaining_seconds}s")
        self.remaining_seconds = remaining_seconds
