"""Supabase-backed profile record store."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from postgrest.exceptions import APIError
from supabase import AsyncClient

from src.manito.auth.exceptions import AuthRequiredError, ProvisioningFailedError

logger = logging.getLogger(__name__)

# PostgreSQL unique_violation
DUPLICATE_KEY_CODE = "23505"
# PostgREST JWT failures and PostgreSQL insufficient_privilege
AUTH_REQUIRED_CODES = frozenset({"PGRST301", "PGRST302", "42501"})
AUTH_REQUIRED_RESULT_CODES = frozenset({"AUTHENTICATION_REQUIRED", "USER_NOT_FOUND"})


class StoreErrorKind(str, Enum):
    DUPLICATE = "duplicate"
    AUTH_REQUIRED = "auth_required"
    OTHER = "other"


@dataclass(frozen=True)
class CreateProfileOutcome:
    profile_id: str | None
    created: bool


class ProfileStore(Protocol):
    """Opaque keyed record store for user profiles."""

    async def profile_exists(self, user_id: str) -> bool: ...

    async def create_profile(
        self, user_id: str, metadata: dict[str, Any] | None = None
    ) -> CreateProfileOutcome: ...


def classify_store_error(error: APIError) -> StoreErrorKind:
    """
    Classify a PostgREST error by its code.

    Only the duplicate-constraint code counts as "already exists"; message
    text is never matched, so unrelated failures are not masked as success.
    """
    code = str(error.code or "")
    if code == DUPLICATE_KEY_CODE:
        return StoreErrorKind.DUPLICATE
    if code in AUTH_REQUIRED_CODES:
        return StoreErrorKind.AUTH_REQUIRED
    return StoreErrorKind.OTHER


class SupabaseProfileStore:
    """
    Profile store backed by Supabase RPC functions.

    Both RPCs run as the authenticated caller, so the database resolves the
    user from the JWT; `user_id` is used for logging only.
    """

    STATUS_FUNCTION = "get_profile_status_enterprise"
    ENSURE_FUNCTION = "ensure_user_profile_enterprise"

    def __init__(self, client: AsyncClient):
        self.client = client

    async def profile_exists(self, user_id: str) -> bool:
        """
        Check whether the caller already has a profile.

        Raises:
            AuthRequiredError: If there is no authenticated caller
            ProvisioningFailedError: On any other store failure
        """
        data = await self._call(self.STATUS_FUNCTION, {}, user_id)
        self._raise_for_result(data, user_id)
        return bool(data.get("profile_exists"))

    async def create_profile(
        self, user_id: str, metadata: dict[str, Any] | None = None
    ) -> CreateProfileOutcome:
        """
        Create the caller's profile. A duplicate is reported as not created.

        Raises:
            AuthRequiredError: If there is no authenticated caller
            ProvisioningFailedError: On any other store failure
        """
        try:
            data = await self._call(
                self.ENSURE_FUNCTION, {"user_metadata": metadata or {}}, user_id
            )
        except _DuplicateProfile:
            logger.info(f"Profile already exists for user {user_id} (duplicate key)")
            return CreateProfileOutcome(profile_id=None, created=False)

        if data.get("profile_exists") and not data.get("success", True):
            return CreateProfileOutcome(profile_id=data.get("profile_id"), created=False)

        self._raise_for_result(data, user_id)
        created = not data.get("profile_exists", False)
        return CreateProfileOutcome(profile_id=data.get("profile_id"), created=created)

    async def _call(self, function: str, params: dict[str, Any], user_id: str) -> dict[str, Any]:
        try:
            response = await self.client.rpc(function, params).execute()
        except APIError as e:
            kind = classify_store_error(e)
            logger.warning(
                f"Profile RPC {function} failed for user {user_id}",
                extra={"code": e.code, "kind": kind.value},
            )
            if kind is StoreErrorKind.DUPLICATE:
                raise _DuplicateProfile() from e
            if kind is StoreErrorKind.AUTH_REQUIRED:
                raise AuthRequiredError(e.message or "Authentication required") from e
            raise ProvisioningFailedError(e.message or "Profile store error", code=e.code) from e

        data = response.data
        if not isinstance(data, dict):
            raise ProvisioningFailedError(f"{function} returned no data", code="NO_DATA")
        return data

    @staticmethod
    def _raise_for_result(data: dict[str, Any], user_id: str) -> None:
        if data.get("success", True):
            return
        code = data.get("error") or "UNKNOWN_ERROR"
        message = data.get("message") or "Profile store error"
        logger.warning(f"Profile store reported {code} for user {user_id}")
        if code in AUTH_REQUIRED_RESULT_CODES:
            raise AuthRequiredError(message)
        raise ProvisioningFailedError(message, code=code)


class _DuplicateProfile(Exception):
    pass
