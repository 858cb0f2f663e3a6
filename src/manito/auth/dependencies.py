"""FastAPI dependencies for the session-code service."""

import logging

from fastapi import HTTPException, status
from jose import JWTError

from src.manito.auth.jwt_validator import AccessTokenVerifier, VerifiedIdentity
from src.manito.config import get_settings
from src.manito.services.session_codes import SessionCodeExchange

logger = logging.getLogger(__name__)

# Initialized in main.py lifespan
_token_verifier: AccessTokenVerifier | None = None
_exchange: SessionCodeExchange | None = None


def set_token_verifier(verifier: AccessTokenVerifier | None) -> None:
    global _token_verifier
    _token_verifier = verifier


def get_token_verifier() -> AccessTokenVerifier:
    """
    Raises:
        RuntimeError: If the application lifespan has not set a verifier
    """
    if _token_verifier is None:
        raise RuntimeError(
            "Token verifier not initialized. Ensure the application lifespan calls "
            "set_token_verifier()."
        )
    return _token_verifier


def get_session_code_exchange() -> SessionCodeExchange:
    """Process-wide exchange; codes live in this process's memory."""
    global _exchange
    if _exchange is None:
        _exchange = SessionCodeExchange(ttl_seconds=get_settings().session_code_ttl_seconds)
    return _exchange


def set_session_code_exchange(exchange: SessionCodeExchange | None) -> None:
    global _exchange
    _exchange = exchange


async def verify_access_token(token: str) -> VerifiedIdentity:
    """
    Verify an access token submitted for a session code.

    Raises:
        HTTPException: 401 if the token is invalid or expired
    """
    try:
        return await get_token_verifier().verify(token)
    except JWTError as e:
        logger.warning(f"Session code request rejected: {e}", extra={"error_type": "invalid_token"})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired access token",
        ) from e
