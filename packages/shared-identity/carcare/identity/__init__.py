"""CarCare identity store.

One logical user store served from three backing stores that never share a
transaction:
- Durable (Supabase users table over HTTP)
- Volatile (process-local memory)
- Local file (JSON on disk, development only)

Reads fan out to every store and are reconciled into one canonical identity;
writes are applied best-effort in priority order and report what happened
in each store.

Example:
    from carcare.identity import IdentityService, IdentityStoreSettings

    with IdentityService.from_settings(IdentityStoreSettings.from_env()) as service:
        result = service.register(
            name="Kim Driver",
            email="driver@example.com",
            password_hash=hashed,
        )
        print(f"Stored in {[kind.value for kind in result.persisted_in]}")

        identity = service.get("driver@example.com")
        print(identity.role, identity.provenance, identity.divergent)
"""

from carcare.identity.base import BaseStoreAdapter
from carcare.identity.config import (
    IdentityStoreSettings,
    StoreConfig,
    StoreKind,
)
from carcare.identity.exceptions import (
    AdapterUnavailableError,
    DuplicateIdentityError,
    IdentityNotFoundError,
    IdentityStoreError,
    InvalidStatusTransitionError,
    WriteFailedError,
)
from carcare.identity.reconciler import ReconciledIdentity, Reconciler
from carcare.identity.records import (
    IdentityRecord,
    Role,
    ShopInfo,
    ShopStatus,
    UserType,
)
from carcare.identity.registry import AdapterRegistry, build_adapters, get_registry
from carcare.identity.roles import RoleResolver
from carcare.identity.service import IdentityService, IdentityStats
from carcare.identity.writer import (
    AdapterOutcome,
    PersistenceState,
    WriteCoordinator,
    WriteOutcome,
    WriteResult,
)

__all__ = [
    # Base
    "BaseStoreAdapter",
    # Config
    "IdentityStoreSettings",
    "StoreConfig",
    "StoreKind",
    # Exceptions
    "AdapterUnavailableError",
    "DuplicateIdentityError",
    "IdentityNotFoundError",
    "IdentityStoreError",
    "InvalidStatusTransitionError",
    "WriteFailedError",
    # Records
    "IdentityRecord",
    "Role",
    "ShopInfo",
    "ShopStatus",
    "UserType",
    # Registry
    "AdapterRegistry",
    "build_adapters",
    "get_registry",
    # Reconciliation
    "ReconciledIdentity",
    "Reconciler",
    "RoleResolver",
    # Writes
    "AdapterOutcome",
    "PersistenceState",
    "WriteCoordinator",
    "WriteOutcome",
    "WriteResult",
    # Service
    "IdentityService",
    "IdentityStats",
]
