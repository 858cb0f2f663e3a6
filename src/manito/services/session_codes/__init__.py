"""Single-use session codes that stand in for raw credentials in links."""

from src.manito.services.session_codes.exchange import (
    SESSION_CODE_LENGTH,
    IssuedSessionCode,
    SessionCodeExchange,
    create_secure_deep_link,
    validate_code_format,
)
from src.manito.services.session_codes.remote import RemoteSessionCodeResolver
from src.manito.services.session_codes.store import (
    InMemorySessionCodeStore,
    SessionCodeEntry,
    SessionCodeStore,
)

__all__ = [
    "SESSION_CODE_LENGTH",
    "IssuedSessionCode",
    "SessionCodeExchange",
    "create_secure_deep_link",
    "validate_code_format",
    "RemoteSessionCodeResolver",
    "InMemorySessionCodeStore",
    "SessionCodeEntry",
    "SessionCodeStore",
]
