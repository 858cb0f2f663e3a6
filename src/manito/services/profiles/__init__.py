"""Profile provisioning for authenticated identities."""

from src.manito.services.profiles.coordinator import (
    ProvisioningCoordinator,
    ProvisioningErrorKind,
    ProvisioningResult,
)
from src.manito.services.profiles.store import (
    CreateProfileOutcome,
    ProfileStore,
    SupabaseProfileStore,
    classify_store_error,
)

__all__ = [
    "ProvisioningCoordinator",
    "ProvisioningErrorKind",
    "ProvisioningResult",
    "CreateProfileOutcome",
    "ProfileStore",
    "SupabaseProfileStore",
    "classify_store_error",
]
