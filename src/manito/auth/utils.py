"""Helpers for keeping credentials out of log output."""

from typing import Any

from pydantic import SecretStr


def describe_secret(value: SecretStr | str | None) -> dict[str, Any]:
    """
    Summarize a credential for logging without revealing it.

    Example:
        >>> describe_secret("abc123")
        {'present': True, 'length': 6}
    """
    if isinstance(value, SecretStr):
        value = value.get_secret_value()
    if not value:
        return {"present": False, "length": 0}
    return {"present": True, "length": len(value)}
