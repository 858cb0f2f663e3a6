"""API handlers for the session-code exchange."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.manito.auth.dependencies import get_session_code_exchange, verify_access_token
from src.manito.auth.exceptions import InvalidInputError, NotFoundOrExpiredError
from src.manito.auth.models import CredentialPair
from src.manito.config import get_settings
from src.manito.features.session_codes.schemas import (
    CreateSessionCodeRequest,
    RetrieveSessionRequest,
    RetrieveSessionResponse,
    SessionCodeResponse,
)
from src.manito.services.rate_limiter import issue_rate_limit, retrieve_rate_limit
from src.manito.services.session_codes import SessionCodeExchange, create_secure_deep_link

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/session-codes",
    response_model=SessionCodeResponse,
    status_code=status.HTTP_201_CREATED,
)
@issue_rate_limit
async def create_session_code(
    request: Request,
    payload: CreateSessionCodeRequest,
    exchange: SessionCodeExchange = Depends(get_session_code_exchange),
) -> SessionCodeResponse:
    """
    Hold a verified credential pair behind a single-use session code.

    Called by the web callback page after email confirmation, so the app is
    opened with a short-lived code instead of raw tokens.

    Raises:
        HTTPException: 401 if the access token does not verify
    """
    identity = await verify_access_token(payload.access_token)

    pair = CredentialPair(
        access_token=payload.access_token,
        refresh_token=payload.refresh_token,
        type=payload.type,
    )
    issued = await exchange.issue(pair)
    settings = get_settings()

    logger.info("Issued session code", extra={"user_id": identity.user_id, "type": payload.type})
    return SessionCodeResponse(
        session_code=issued.code,
        expires_at=issued.expires_at_datetime,
        deep_link=create_secure_deep_link(issued, payload.type, scheme=settings.deep_link_scheme),
    )


@router.post("/retrieve-session", response_model=RetrieveSessionResponse)
@retrieve_rate_limit
async def retrieve_session(
    request: Request,
    payload: RetrieveSessionRequest,
    exchange: SessionCodeExchange = Depends(get_session_code_exchange),
) -> RetrieveSessionResponse:
    """
    Redeem a session code. Each code works once.

    Raises:
        HTTPException: 400 for a malformed code, 404 for an unknown, consumed
            or expired code
    """
    try:
        pair = await exchange.resolve(payload.session_code)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except NotFoundOrExpiredError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session code not found or expired",
        ) from e

    return RetrieveSessionResponse(
        access_token=pair.access_token.get_secret_value(),
        refresh_token=pair.refresh_token.get_secret_value(),
        type=pair.type,
    )
