"""Parse inbound deep links / universal links into credential shapes."""

import logging
from dataclasses import dataclass
from urllib.parse import parse_qs, urlsplit

from pydantic import SecretStr

from src.manito.auth.exceptions import InvalidInputError
from src.manito.auth.models import CredentialPair

logger = logging.getLogger(__name__)

MAX_LINK_LENGTH = 2000

AUTH_CALLBACK_PATHS = ("auth/callback", "auth/verify")
VERIFIED_PATHS = ("auth/verified",)
ERROR_PATHS = ("auth/error",)


@dataclass(frozen=True)
class SessionCode:
    code: str
    type: str | None = None


@dataclass(frozen=True)
class DirectTokens:
    pair: CredentialPair


@dataclass(frozen=True)
class OtpHash:
    token_hash: SecretStr
    type: str


@dataclass(frozen=True)
class NoCredentials:
    pass


ExtractedCredentials = SessionCode | DirectTokens | OtpHash | NoCredentials


@dataclass(frozen=True)
class LinkError:
    """Provider error reported on an auth-error link."""

    error: str
    description: str | None = None


@dataclass(frozen=True)
class ParsedLink:
    """A validated link split into its route and merged parameters."""

    route: str
    params: dict[str, str]

    @property
    def is_auth_callback(self) -> bool:
        return any(path in self.route for path in AUTH_CALLBACK_PATHS + VERIFIED_PATHS)

    @property
    def is_auth_error(self) -> bool:
        return any(path in self.route for path in ERROR_PATHS)


def parse_link(url: str) -> ParsedLink:
    """
    Validate a link and merge its query and fragment parameters.

    Query parameters take precedence; fragment parameters fill in the rest
    (providers deliver implicit-grant tokens in the fragment).

    Raises:
        InvalidInputError: If the URL is empty, too long or unparsable
    """
    if not url or not isinstance(url, str) or len(url) > MAX_LINK_LENGTH:
        logger.warning("invalid link received")
        raise InvalidInputError("Invalid link")

    try:
        parts = urlsplit(url.strip())
    except ValueError:
        logger.warning("invalid link received")
        raise InvalidInputError("Invalid link") from None

    if not parts.scheme:
        logger.warning("invalid link received")
        raise InvalidInputError("Invalid link")

    params: dict[str, str] = {}
    for source in (parts.query, parts.fragment):
        for key, values in parse_qs(source, keep_blank_values=False).items():
            if values and key not in params:
                params[key] = values[0]

    # Custom schemes put the first path segment in netloc (manito://auth/callback)
    route = f"{parts.netloc}{parts.path}".strip("/")
    return ParsedLink(route=route, params=params)


def extract_credentials(link: ParsedLink) -> ExtractedCredentials:
    """
    Select the credential shape carried by a link.

    Priority: session code, then direct tokens, then OTP hash + type. A link
    carrying none of these is a plain "return to app" signal.
    """
    params = link.params
    link_type = params.get("type")

    session_code = params.get("session_code")
    if session_code:
        logger.info("Link carries a session code", extra={"code_length": len(session_code)})
        return SessionCode(code=session_code, type=link_type)

    access_token = params.get("access_token")
    refresh_token = params.get("refresh_token")
    if access_token and refresh_token:
        pair = CredentialPair(access_token=access_token, refresh_token=refresh_token, type=link_type)
        logger.info("Link carries direct tokens (legacy path)", extra=pair.describe())
        return DirectTokens(pair=pair)

    token_hash = params.get("token_hash")
    if token_hash and link_type:
        logger.info("Link carries an OTP token hash", extra={"type": link_type})
        return OtpHash(token_hash=SecretStr(token_hash), type=link_type)

    return NoCredentials()


def extract_link_error(link: ParsedLink) -> LinkError | None:
    """Return the provider error carried by a link, if any."""
    error = link.params.get("error")
    if not error:
        return None
    return LinkError(error=error, description=link.params.get("error_description"))


def extract_from_url(url: str) -> ExtractedCredentials:
    """
    Parse a callback URL and return exactly one credential shape.

    Raises:
        InvalidInputError: If the URL is malformed

    Example:
        >>> extract_from_url("manito://auth/callback?session_code=ab...&type=signup")
        SessionCode(code='ab...', type='signup')
    """
    return extract_credentials(parse_link(url))
