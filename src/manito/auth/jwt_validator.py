"""Access-token verification against the provider's JWKS."""

import logging
import time
from typing import Any

import httpx
from jose import JWTError, jwk, jwt
from jose.backends.base import Key
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ["RS256", "ES256"]
_KEY_TYPE_ALGORITHMS = {"RSA": "RS256", "EC": "ES256"}


class VerifiedIdentity(BaseModel):
    """Claims of a verified access token that the session service relies on."""

    user_id: str
    email: str | None = None
    expires_at: int
    user_metadata: dict[str, Any] = Field(default_factory=dict)


class JWKSCache:
    """
    In-memory cache of the provider's signing keys.

    Keys are refetched once the TTL has elapsed, and once more when a token
    names an unknown key id (key rotation).
    """

    def __init__(
        self,
        jwks_url: str,
        cache_ttl: int = 3600,
        http_client: httpx.AsyncClient | None = None,
        clock=time.monotonic,
    ):
        self.jwks_url = jwks_url
        self.cache_ttl = cache_ttl
        self._keys: dict[str, Key] = {}
        self._fetched_at: float | None = None
        self._clock = clock
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, connect=5.0)
        )

    async def get_signing_key(self, kid: str) -> Key:
        """
        Raises:
            JWTError: If no key with this id is published
            httpx.HTTPError: If the JWKS fetch fails
        """
        if self._is_stale():
            await self.refresh_keys()

        key = self._keys.get(kid)
        if key is None:
            logger.warning(f"Key ID '{kid}' not cached, refreshing JWKS", extra={"kid": kid})
            await self.refresh_keys()
            key = self._keys.get(kid)

        if key is None:
            raise JWTError(f"Unknown signing key '{kid}'")
        return key

    async def refresh_keys(self) -> None:
        response = await self._http_client.get(self.jwks_url)
        response.raise_for_status()

        keys: dict[str, Key] = {}
        for key_data in response.json().get("keys", []):
            kid = key_data.get("kid")
            if not kid:
                logger.warning("JWKS key missing 'kid', skipping")
                continue
            algorithm = _KEY_TYPE_ALGORITHMS.get(key_data.get("kty"), key_data.get("alg", "RS256"))
            keys[kid] = jwk.construct(key_data, algorithm=algorithm)

        if not keys:
            logger.warning("JWKS response contains no usable keys", extra={"jwks_url": self.jwks_url})

        self._keys = keys
        self._fetched_at = self._clock()
        logger.info("JWKS cache refreshed", extra={"key_count": len(keys)})

    def _is_stale(self) -> bool:
        return self._fetched_at is None or self._clock() - self._fetched_at >= self.cache_ttl

    async def close(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()


class AccessTokenVerifier:
    """
    Verifies provider-issued access tokens locally.

    Checks signature, expiry, issuer and audience. Used by the session
    service before it agrees to hold a credential pair behind a code.

    Example:
        >>> verifier = AccessTokenVerifier(cache, issuer="https://x.supabase.co/auth/v1")
        >>> identity = await verifier.verify(access_token)
        >>> identity.user_id
    """

    def __init__(
        self,
        jwks_cache: JWKSCache,
        issuer: str,
        audience: str = "authenticated",
        leeway: int = 10,
    ):
        self.jwks_cache = jwks_cache
        self.issuer = issuer
        self.audience = audience
        self.leeway = leeway

    async def verify(self, token: str) -> VerifiedIdentity:
        """
        Raises:
            JWTError: If the token is malformed, expired, or fails signature,
                issuer or audience checks
        """
        try:
            kid = jwt.get_unverified_header(token).get("kid")
            if not kid:
                raise JWTError("JWT header missing 'kid'")

            signing_key = await self.jwks_cache.get_signing_key(kid)
            claims = jwt.decode(
                token,
                signing_key,
                algorithms=SUPPORTED_ALGORITHMS,
                audience=self.audience,
                issuer=self.issuer,
                options={"require_exp": True, "require_sub": True, "leeway": self.leeway},
            )
        except JWTError as e:
            logger.warning(f"Access token rejected: {e}", extra={"error_type": "jwt_invalid"})
            raise
        except httpx.HTTPError as e:
            logger.error(f"Could not load signing keys: {e}", extra={"error_type": "jwks_fetch_failed"})
            raise JWTError("Signing keys unavailable") from e

        return VerifiedIdentity(
            user_id=str(claims["sub"]),
            email=claims.get("email"),
            expires_at=int(claims["exp"]),
            user_metadata=claims.get("user_metadata") or {},
        )

    async def close(self) -> None:
        await self.jwks_cache.close()


def build_verifier(supabase_url: str, audience: str, leeway: int, cache_ttl: int) -> AccessTokenVerifier:
    """Verifier for a Supabase project's auth server."""
    cache = JWKSCache(f"{supabase_url}/auth/v1/.well-known/jwks.json", cache_ttl=cache_ttl)
    return AccessTokenVerifier(cache, issuer=f"{supabase_url}/auth/v1", audience=audience, leeway=leeway)
