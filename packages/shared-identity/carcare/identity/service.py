"""Identity service used by authentication, admin and shop-approval code.

The service owns one process-wide VolatileStore, the composed adapters, the
Reconciler and the WriteCoordinator. Build it once at startup and close it
at shutdown:

    >>> with IdentityService.from_settings(IdentityStoreSettings.from_env()) as service:
    ...     service.bootstrap_super_admin()
    ...     result = service.register(
    ...         name="Kim Driver",
    ...         email="driver@example.com",
    ...         password_hash=bcrypt_hash,
    ...     )
    ...     result.to_dict()["persistedIn"]
    ['durable']
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

from carcare.identity.adapters.volatile import VolatileStore
from carcare.identity.base import BaseStoreAdapter
from carcare.identity.config import IdentityStoreSettings
from carcare.identity.exceptions import DuplicateIdentityError, InvalidStatusTransitionError
from carcare.identity.reconciler import ReconciledIdentity, Reconciler
from carcare.identity.records import IdentityRecord, Role, ShopInfo, ShopStatus, UserType
from carcare.identity.registry import build_adapters
from carcare.identity.writer import WriteCoordinator, WriteResult, is_email_key

logger = logging.getLogger(__name__)

# Signature of the password check supplied by the authentication layer:
# verify(plain_password, password_hash) -> bool
PasswordVerifier = Callable[[str, str], bool]


@dataclass
class IdentityStats:
    """Counts over the deduplicated identity listing."""

    total_users: int = 0
    customers: int = 0
    shop_owners: int = 0
    pending_shops: int = 0
    approved_shops: int = 0
    admins: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class IdentityService:
    """Facade over reconciliation and best-effort writes."""

    def __init__(
        self,
        adapters: Sequence[BaseStoreAdapter],
        settings: IdentityStoreSettings | None = None,
        volatile_store: VolatileStore | None = None,
    ):
        self.settings = settings or IdentityStoreSettings()
        self.volatile_store = volatile_store
        self.adapters = list(adapters)
        self.reconciler = Reconciler(self.adapters)
        self.writer = WriteCoordinator(
            self.adapters, self.reconciler, replicate=self.settings.replicate_writes
        )

    @classmethod
    def from_settings(
        cls,
        settings: IdentityStoreSettings,
        volatile_store: VolatileStore | None = None,
    ) -> IdentityService:
        """Compose the adapters described by ``settings``.

        Args:
            settings: Store settings.
            volatile_store: In-memory store to share. A new one is created
                when omitted; it lives as long as the service.
        """
        store = volatile_store if volatile_store is not None else VolatileStore()
        adapters = build_adapters(settings.store_configs(), volatile_store=store)
        logger.info(
            f"Identity service using stores: "
            f"{[a.store_kind.value for a in adapters if a.is_enabled]} "
            f"(environment={settings.environment})"
        )
        return cls(adapters, settings=settings, volatile_store=store)

    def __enter__(self) -> IdentityService:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        """Release adapters and the reconciler's worker pool."""
        self.reconciler.close()
        for adapter in self.adapters:
            adapter.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, email: str) -> ReconciledIdentity:
        """Canonical identity for ``email``; raises IdentityNotFoundError."""
        return self.reconciler.get_by_email(email)

    def list_identities(self) -> list[ReconciledIdentity]:
        return self.reconciler.list_all()

    def authenticate(
        self, email: str, password: str, verify: PasswordVerifier
    ) -> ReconciledIdentity | None:
        """Check credentials against the canonical identity.

        The hash is handed to ``verify`` untouched; identities without a
        hash never authenticate.
        """
        identity = self.reconciler.find_by_email(email)
        if identity is None or not identity.record.password_hash:
            return None
        if not verify(password, identity.record.password_hash):
            return None
        return identity

    def get_admin(self, email: str) -> ReconciledIdentity | None:
        """Return the identity if its resolved role is ADMIN or SUPER_ADMIN."""
        identity = self.reconciler.find_by_email(email)
        if identity is None or not identity.is_admin:
            return None
        return identity

    def pending_shops(self) -> list[ReconciledIdentity]:
        """Shop owners awaiting review, one entry per email."""
        return [
            identity
            for identity in self.reconciler.list_all()
            if identity.record.user_type is UserType.SHOP_OWNER
            and identity.record.shop_info is not None
            and identity.record.shop_info.status is ShopStatus.PENDING
        ]

    def stats(self) -> IdentityStats:
        stats = IdentityStats()
        for identity in self.reconciler.list_all():
            record = identity.record
            stats.total_users += 1
            if record.user_type is UserType.CUSTOMER:
                stats.customers += 1
            elif record.user_type is UserType.SHOP_OWNER:
                stats.shop_owners += 1
                if record.shop_info is not None:
                    if record.shop_info.status is ShopStatus.PENDING:
                        stats.pending_shops += 1
                    elif record.shop_info.status is ShopStatus.APPROVED:
                        stats.approved_shops += 1
            if identity.is_admin:
                stats.admins += 1
        return stats

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def register(
        self,
        name: str,
        email: str,
        password_hash: str,
        phone: str | None = None,
        user_type: UserType = UserType.CUSTOMER,
        shop_info: ShopInfo | None = None,
    ) -> WriteResult:
        """Create a new identity.

        Raises:
            DuplicateIdentityError: If any reachable store already holds the email.
            WriteFailedError: If no store accepted the identity.
        """
        if self.reconciler.find_by_email(email) is not None:
            raise DuplicateIdentityError(email)
        record = IdentityRecord.new(
            email=email,
            name=name,
            password_hash=password_hash,
            user_type=user_type,
            phone=phone,
            shop_info=shop_info,
        )
        return self.writer.create(record)

    def register_shop(
        self,
        name: str,
        email: str,
        password_hash: str,
        shop_name: str,
        business_number: str,
        address: str,
        phone: str | None = None,
        description: str | None = None,
        business_license_url: str | None = None,
    ) -> WriteResult:
        """Create a shop owner whose shop starts PENDING review."""
        shop_info = ShopInfo(
            shop_name=shop_name,
            business_number=business_number,
            address=address,
            status=ShopStatus.PENDING,
            created_at=datetime.now(UTC),
            description=description,
            business_license_url=business_license_url,
        )
        return self.register(
            name=name,
            email=email,
            password_hash=password_hash,
            phone=phone,
            user_type=UserType.SHOP_OWNER,
            shop_info=shop_info,
        )

    def change_role(self, email: str, role: Role | str) -> WriteResult:
        """Write ``role`` to every store holding ``email``."""
        result = self.writer.update(email, {"role": Role(role)})
        logger.info(f"Role of {email} set to {Role(role).value}")
        return result

    def review_shop(self, key: str, approve: bool) -> WriteResult:
        """Approve or reject a pending shop addressed by email or id.

        Raises:
            InvalidStatusTransitionError: If the identity has no shop or the
                shop was already reviewed.
        """
        identity = self.reconciler.get_by_email(key) if is_email_key(key) else self.reconciler.get_by_id(key)
        shop_info = identity.record.shop_info
        if identity.record.user_type is not UserType.SHOP_OWNER or shop_info is None:
            raise InvalidStatusTransitionError(f"{identity.email} does not own a shop")

        status = ShopStatus.APPROVED if approve else ShopStatus.REJECTED
        # Every holder receives the canonical shop details with the new status
        return self.writer.update(identity.email, {"shop_info": shop_info.with_status(status)})

    def bootstrap_super_admin(self, email: str | None = None, name: str = "Super Admin") -> WriteResult | None:
        """Make sure the configured super admin exists with SUPER_ADMIN role.

        An existing identity is promoted in every store holding it. Otherwise
        an ADMIN-type account with SUPER_ADMIN role and no password is
        written to every store that accepts it, whatever the coordinator's
        replication setting.

        Returns:
            The write result, or None when no super admin email is configured.
        """
        email = email or self.settings.super_admin_email
        if not email:
            return None
        identity = self.reconciler.find_by_email(email)
        if identity is not None:
            if identity.is_super_admin:
                return None
            return self.change_role(email, Role.SUPER_ADMIN)

        record = IdentityRecord.new(
            email=email,
            name=name,
            user_type=UserType.ADMIN,
            role=Role.SUPER_ADMIN,
        )
        return self.writer.create(record, replicate=True)
