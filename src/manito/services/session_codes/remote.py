"""Resolve session codes against the companion web-callback service."""

import logging

import httpx
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.manito.auth.exceptions import (
    InvalidInputError,
    NotFoundOrExpiredError,
    ResolutionFailedError,
)
from src.manito.auth.models import CredentialPair
from src.manito.services.session_codes.exchange import validate_code_format

logger = logging.getLogger(__name__)


class RemoteSessionCodeResolver:
    """
    Redeems session codes through `POST /api/retrieve-session`.

    Only connection failures are retried (the request never reached the
    server, so the single-use code is still intact). Every other transport or
    server failure surfaces as ResolutionFailedError.

    Attributes:
        retrieve_url: Full URL of the retrieve-session endpoint
        max_connect_attempts: Attempts made when the connection itself fails
    """

    def __init__(
        self,
        retrieve_url: str,
        timeout: float = 10.0,
        max_connect_attempts: int = 2,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.retrieve_url = retrieve_url
        self.max_connect_attempts = max_connect_attempts
        self._http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=timeout)
        )

    async def resolve(self, code: str) -> CredentialPair:
        """
        Redeem a code for its credential pair.

        Raises:
            InvalidInputError: If the code has the wrong format
            NotFoundOrExpiredError: If the service reports the code dead
            ResolutionFailedError: On network errors or unexpected responses
        """
        validate_code_format(code)
        logger.info("Retrieving tokens from session code via API", extra={"code_length": len(code)})

        try:
            response = await self._post(code)
        except httpx.HTTPError as e:
            logger.warning(
                f"Session code retrieval failed: {type(e).__name__}",
                extra={"error_type": "session_code_transport_error"},
            )
            raise ResolutionFailedError("Could not reach session service") from e

        if response.status_code in (404, 410):
            raise NotFoundOrExpiredError(reason="not_found")
        if response.status_code == 400:
            raise InvalidInputError("Invalid session code format")
        if response.status_code != 200:
            logger.warning(
                "Session code retrieval failed",
                extra={"status": response.status_code, "error_type": "session_code_http_error"},
            )
            raise ResolutionFailedError(f"Session service returned {response.status_code}")

        try:
            pair = CredentialPair.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error("Session service returned an unreadable payload")
            raise ResolutionFailedError("Invalid session service response") from e

        logger.info("Retrieved tokens from session code", extra=pair.describe())
        return pair

    async def _post(self, code: str) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_connect_attempts),
            wait=wait_exponential(multiplier=0.2, max=2),
            retry=retry_if_exception_type(httpx.ConnectError),
            reraise=True,
        ):
            with attempt:
                return await self._http_client.post(self.retrieve_url, json={"session_code": code})
        raise ResolutionFailedError("Could not reach session service")

    async def close(self) -> None:
        await self._http_client.aclose()
