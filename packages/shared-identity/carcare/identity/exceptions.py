"""Custom exceptions for the identity store."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from carcare.identity.config import StoreKind
    from carcare.identity.writer import WriteResult


class IdentityStoreError(Exception):
    """Base exception for identity store errors."""

    pass


class AdapterUnavailableError(IdentityStoreError):
    """Raised when a store cannot serve a call (transport, disk, config).

    Callers treat this as "no data from this store" for the current call.
    """

    def __init__(self, store_kind: StoreKind, reason: str):
        self.store_kind = store_kind
        self.reason = reason
        super().__init__(f"{store_kind.value} store unavailable: {reason}")


class IdentityNotFoundError(IdentityStoreError):
    """Raised when no reachable store holds the requested identity."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"No identity found for {key!r}")


class DuplicateIdentityError(IdentityStoreError):
    """Raised when creating an identity whose email is already registered."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Identity already exists for {email!r}")


class InvalidStatusTransitionError(IdentityStoreError):
    """Raised when a write would move a shop status backwards."""

    pass


class WriteFailedError(IdentityStoreError):
    """Raised when every attempted store rejected a write."""

    def __init__(self, result: WriteResult):
        self.result = result
        failed = ", ".join(
            f"{outcome.store_kind.value}: {outcome.error}" for outcome in result.failed_outcomes
        )
        super().__init__(f"{result.operation} failed on every store ({failed})")
