"""Identity record models shared by every store adapter.

An ``IdentityRecord`` is one store's view of a user account. The same person
can be held by several stores at once, each under its own store-local id;
the email address is the only key the stores agree on.

Examples:
    Creating a record for a new customer:
        >>> record = IdentityRecord.new(
        ...     email="driver@example.com",
        ...     name="Kim Driver",
        ...     password_hash="$2a$12$...",
        ... )
        >>> record.effective_role
        <Role.USER: 'USER'>

    Reading a row as stored in the durable users table:
        >>> record = IdentityRecord.from_row({
        ...     "id": "user_1700000000000_ab12",
        ...     "email": "owner@example.com",
        ...     "name": "Shop Owner",
        ...     "password": "$2a$12$...",
        ...     "userType": "SHOP_OWNER",
        ...     "shopInfo": {"shopName": "Fast Fix", "status": "PENDING"},
        ...     "createdAt": "2024-05-01T09:00:00+00:00",
        ... })
        >>> record.shop_info.status
        <ShopStatus.PENDING: 'PENDING'>
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class UserType(str, Enum):
    """Kind of account."""

    CUSTOMER = "CUSTOMER"
    SHOP_OWNER = "SHOP_OWNER"
    ADMIN = "ADMIN"


class Role(str, Enum):
    """Privilege overlay. A record without a role is treated as USER."""

    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"

    @property
    def rank(self) -> int:
        """Position in the total order USER < ADMIN < SUPER_ADMIN."""
        return _ROLE_RANKS[self]


_ROLE_RANKS = {Role.USER: 0, Role.ADMIN: 1, Role.SUPER_ADMIN: 2}


class ShopStatus(str, Enum):
    """Shop approval status. Moves forward only."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @property
    def is_final(self) -> bool:
        """Return True once the shop has been reviewed."""
        return self is not ShopStatus.PENDING

    def can_transition_to(self, target: ShopStatus) -> bool:
        """Check whether moving from this status to ``target`` is allowed.

        PENDING may move to any status; a reviewed shop keeps its status.
        """
        return self is ShopStatus.PENDING or target is self


# Fields a patch may touch. id and email are store keys and never change.
PATCHABLE_FIELDS = frozenset(
    {"name", "password_hash", "phone", "user_type", "role", "shop_info"}
)


def role_rank(role: Role | str | None) -> int:
    """Return the rank of a role, treating a missing role as USER."""
    if role is None:
        return Role.USER.rank
    return Role(role).rank


def generate_record_id() -> str:
    """Generate a store-local record id (``user_<epoch-ms>_<random>``)."""
    millis = int(datetime.now(UTC).timestamp() * 1000)
    return f"user_{millis}_{uuid.uuid4().hex[:10]}"


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class ShopInfo:
    """Business details attached to a shop owner account."""

    shop_name: str
    business_number: str = ""
    address: str = ""
    status: ShopStatus = ShopStatus.PENDING
    created_at: datetime | None = None
    description: str | None = None
    business_license_url: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ShopInfo:
        """Build shop info from its stored (camelCase) form."""
        return cls(
            shop_name=str(row.get("shopName", "")),
            business_number=str(row.get("businessNumber", "")),
            address=str(row.get("address", "")),
            status=ShopStatus(row.get("status") or ShopStatus.PENDING.value),
            created_at=_parse_timestamp(row.get("createdAt")),
            description=row.get("description"),
            business_license_url=row.get("businessLicenseUrl"),
        )

    def to_row(self) -> dict[str, Any]:
        """Serialize to the stored (camelCase) form."""
        row: dict[str, Any] = {
            "shopName": self.shop_name,
            "businessNumber": self.business_number,
            "address": self.address,
            "status": self.status.value,
            "createdAt": _format_timestamp(self.created_at),
        }
        if self.description is not None:
            row["description"] = self.description
        if self.business_license_url is not None:
            row["businessLicenseUrl"] = self.business_license_url
        return row

    def with_status(self, status: ShopStatus) -> ShopInfo:
        """Return a copy carrying ``status``."""
        return replace(self, status=status)


@dataclass(frozen=True)
class IdentityRecord:
    """One store's view of a user account.

    Attributes:
        id: Store-local identifier. Ids are not shared between stores.
        email: Cross-store natural key, matched exactly (case-sensitive).
        name: Display name.
        password_hash: Opaque credential blob. Never inspected here.
        user_type: Kind of account.
        role: Optional privilege overlay; None means USER.
        phone: Optional phone number.
        shop_info: Optional business details for shop owners.
        created_at: Creation time in the holding store.
        updated_at: Last modification time in the holding store.
    """

    id: str
    email: str
    name: str
    password_hash: str = field(default="", repr=False)
    user_type: UserType = UserType.CUSTOMER
    role: Role | None = None
    phone: str | None = None
    shop_info: ShopInfo | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def new(
        cls,
        email: str,
        name: str,
        password_hash: str = "",
        user_type: UserType = UserType.CUSTOMER,
        role: Role | None = None,
        phone: str | None = None,
        shop_info: ShopInfo | None = None,
        record_id: str = "",
    ) -> IdentityRecord:
        """Create an unsaved record stamped with the current time.

        An empty ``record_id`` lets the receiving store assign its own id.
        """
        if not email:
            raise ValueError("email is required")
        now = datetime.now(UTC)
        return cls(
            id=record_id,
            email=email,
            name=name,
            password_hash=password_hash,
            user_type=UserType(user_type),
            role=Role(role) if role is not None else None,
            phone=phone,
            shop_info=shop_info,
            created_at=now,
            updated_at=now,
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> IdentityRecord:
        """Build a record from its stored (camelCase) form.

        Raises:
            ValueError: If the row has no email or carries an unknown enum value.
        """
        email = row.get("email")
        if not email:
            raise ValueError(f"Stored identity row has no email (id={row.get('id')})")
        shop_info = row.get("shopInfo")
        role = row.get("role")
        return cls(
            id=str(row.get("id", "")),
            email=str(email),
            name=str(row.get("name", "")),
            password_hash=str(row.get("password") or ""),
            user_type=UserType(row.get("userType") or UserType.CUSTOMER.value),
            role=Role(role) if role else None,
            phone=row.get("phone") or None,
            shop_info=ShopInfo.from_row(shop_info) if shop_info else None,
            created_at=_parse_timestamp(row.get("createdAt")),
            updated_at=_parse_timestamp(row.get("updatedAt")),
        )

    def to_row(self) -> dict[str, Any]:
        """Serialize to the stored (camelCase) form."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "password": self.password_hash,
            "phone": self.phone,
            "userType": self.user_type.value,
            "role": self.role.value if self.role else None,
            "shopInfo": self.shop_info.to_row() if self.shop_info else None,
            "createdAt": _format_timestamp(self.created_at),
            "updatedAt": _format_timestamp(self.updated_at),
        }

    def to_public_dict(self) -> dict[str, Any]:
        """Serialize for responses; the password hash is left out."""
        row = self.to_row()
        del row["password"]
        row["role"] = self.effective_role.value
        return row

    @property
    def effective_role(self) -> Role:
        """Role with the USER default applied."""
        return self.role or Role.USER

    def with_id(self, record_id: str) -> IdentityRecord:
        """Return a copy under a different store-local id."""
        return replace(self, id=record_id)

    def apply_patch(self, patch: dict[str, Any]) -> IdentityRecord:
        """Return a copy with ``patch`` applied and ``updated_at`` refreshed.

        Args:
            patch: Mapping of snake_case field names to new values.

        Raises:
            ValueError: If the patch names an unknown or immutable field.
        """
        changes = normalize_patch(patch)
        changes["updated_at"] = datetime.now(UTC)
        return replace(self, **changes)


def normalize_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """Validate a patch and coerce its values to model types.

    Raises:
        ValueError: If the patch is empty or names a field that cannot change.
    """
    if not patch:
        raise ValueError("Patch must change at least one field")
    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        raise ValueError(
            f"Cannot patch field(s): {', '.join(sorted(unknown))}. "
            f"Patchable fields are: {', '.join(sorted(PATCHABLE_FIELDS))}"
        )

    changes: dict[str, Any] = dict(patch)
    if "role" in changes and changes["role"] is not None:
        changes["role"] = Role(changes["role"])
    if "user_type" in changes:
        changes["user_type"] = UserType(changes["user_type"])
    shop_info = changes.get("shop_info")
    if isinstance(shop_info, dict):
        changes["shop_info"] = ShopInfo.from_row(shop_info)
    return changes


def patch_to_row(patch: dict[str, Any]) -> dict[str, Any]:
    """Translate a validated snake_case patch into stored column names."""
    changes = normalize_patch(patch)
    columns = {
        "name": "name",
        "password_hash": "password",
        "phone": "phone",
        "user_type": "userType",
        "role": "role",
        "shop_info": "shopInfo",
    }
    row: dict[str, Any] = {}
    for key, value in changes.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, ShopInfo):
            value = value.to_row()
        row[columns[key]] = value
    row["updatedAt"] = datetime.now(UTC).isoformat()
    return row
