"""Best-effort writes across the configured identity stores."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from carcare.identity.base import BaseStoreAdapter
from carcare.identity.config import StoreKind
from carcare.identity.exceptions import (
    AdapterUnavailableError,
    DuplicateIdentityError,
    IdentityNotFoundError,
    InvalidStatusTransitionError,
    WriteFailedError,
)
from carcare.identity.records import IdentityRecord, ShopInfo, normalize_patch
from carcare.identity.reconciler import Reconciler

logger = logging.getLogger(__name__)


class WriteOutcome(str, Enum):
    """What happened to one store during a write."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    FAILED = "failed"
    SKIPPED = "skipped"  # Not attempted: an earlier store already persisted the record


class PersistenceState(str, Enum):
    """How widely a write landed."""

    NOT_PERSISTED = "not_persisted"
    PARTIALLY_PERSISTED = "partially_persisted"
    FULLY_PERSISTED = "fully_persisted"


PERSISTED_OUTCOMES = {WriteOutcome.CREATED, WriteOutcome.UPDATED, WriteOutcome.DELETED}


@dataclass
class AdapterOutcome:
    """Result of a write against one store."""

    store_kind: StoreKind
    outcome: WriteOutcome
    record_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "store": self.store_kind.value,
            "outcome": self.outcome.value,
            "recordId": self.record_id,
            "error": self.error,
        }


@dataclass
class WriteResult:
    """Per-store report of a create, update or delete.

    The write counts as successful when at least one store persisted it;
    there is no all-or-nothing guarantee.
    """

    operation: str
    key: str
    outcomes: list[AdapterOutcome] = field(default_factory=list)
    record: IdentityRecord | None = None

    @property
    def persisted_in(self) -> list[StoreKind]:
        """Stores that applied the write, in priority order."""
        return [o.store_kind for o in self.outcomes if o.outcome in PERSISTED_OUTCOMES]

    @property
    def failed_outcomes(self) -> list[AdapterOutcome]:
        return [o for o in self.outcomes if o.outcome is WriteOutcome.FAILED]

    @property
    def failed_in(self) -> list[StoreKind]:
        return [o.store_kind for o in self.failed_outcomes]

    @property
    def succeeded(self) -> bool:
        return bool(self.persisted_in)

    @property
    def is_partial(self) -> bool:
        """True when some stores persisted the write and others failed."""
        return self.succeeded and bool(self.failed_outcomes)

    @property
    def state(self) -> PersistenceState:
        if not self.succeeded:
            return PersistenceState.NOT_PERSISTED
        if len(self.persisted_in) == len(self.outcomes):
            return PersistenceState.FULLY_PERSISTED
        return PersistenceState.PARTIALLY_PERSISTED

    def to_dict(self) -> dict[str, Any]:
        """Serialize for request handlers so operators see where a write landed."""
        return {
            "operation": self.operation,
            "key": self.key,
            "success": self.succeeded,
            "state": self.state.value,
            "persistedIn": [kind.value for kind in self.persisted_in],
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "record": self.record.to_public_dict() if self.record else None,
        }


def is_email_key(key: str) -> bool:
    """Return True when a write key is an email rather than a store-local id."""
    return "@" in key


class WriteCoordinator:
    """Apply creates, updates and deletes across stores in priority order.

    Creates stop at the first store that accepts the record unless
    ``replicate`` is set, in which case the same id is written to every
    remaining store as well. Updates and deletes reach every store that
    holds the identity. No retries happen here; a failing store is reported
    and the next one is tried.

    Every store call runs on that store's lane in the reconciler and is
    bounded by the store's deadline. A store that misses it is reported as
    FAILED, although the late call may still land; the next read then shows
    the identity as divergent.

    Example:
        >>> coordinator = WriteCoordinator(adapters, reconciler)
        >>> result = coordinator.create(IdentityRecord.new(email="a@x.com", name="A"))
        >>> result.persisted_in
        [<StoreKind.VOLATILE: 'volatile'>]
        >>> coordinator.update("a@x.com", {"role": "ADMIN"}).succeeded
        True
    """

    def __init__(
        self,
        adapters: Sequence[BaseStoreAdapter],
        reconciler: Reconciler,
        replicate: bool = False,
    ):
        if not adapters:
            raise ValueError("WriteCoordinator needs at least one store adapter")
        unknown = {a.store_kind for a in adapters} - {a.store_kind for a in reconciler.adapters}
        if unknown:
            raise ValueError(
                f"Stores {sorted(kind.value for kind in unknown)} are not known to the reconciler"
            )
        self.adapters = sorted(adapters, key=lambda adapter: adapter.priority)
        self.reconciler = reconciler
        self.replicate = replicate

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------
    def create(self, record: IdentityRecord, replicate: bool | None = None) -> WriteResult:
        """Persist a new identity in the highest-priority store that accepts it.

        Args:
            record: The identity to create.
            replicate: Overrides the coordinator default for this write.

        Returns:
            WriteResult whose ``record`` is the identity as first persisted.

        Raises:
            DuplicateIdentityError: If a store already holds the email.
            WriteFailedError: If every store failed.
        """
        if replicate is None:
            replicate = self.replicate

        result = WriteResult(operation="create", key=record.email)
        for adapter in self.adapters:
            if result.record is not None and not replicate:
                result.outcomes.append(AdapterOutcome(adapter.store_kind, WriteOutcome.SKIPPED))
                continue

            # Replicas reuse the first store's id so the stores agree
            candidate = result.record or record
            try:
                created = self._call(adapter, "create", candidate)
            except AdapterUnavailableError as e:
                logger.warning(f"Create of {record.email} failed on {adapter.name}: {e.reason}")
                result.outcomes.append(
                    AdapterOutcome(adapter.store_kind, WriteOutcome.FAILED, error=e.reason)
                )
                continue
            except DuplicateIdentityError:
                if result.record is None:
                    raise
                logger.warning(f"{adapter.name} already holds {record.email}; not replicating")
                result.outcomes.append(
                    AdapterOutcome(
                        adapter.store_kind, WriteOutcome.FAILED, error="identity already exists"
                    )
                )
                continue

            result.outcomes.append(
                AdapterOutcome(adapter.store_kind, WriteOutcome.CREATED, record_id=created.id)
            )
            if result.record is None:
                result.record = created

        return self._finish(result)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------
    def update(self, key: str, patch: dict[str, Any]) -> WriteResult:
        """Apply ``patch`` to the identity addressed by ``key``.

        An email key reaches every store holding that email. An id key only
        matches stores whose id space holds it; if the patch touches the
        role, the email is re-resolved and the patch reaches every holder.

        Raises:
            ValueError: If the patch names an unknown or immutable field.
            InvalidStatusTransitionError: If the patch would move a reviewed
                shop back to another status.
            IdentityNotFoundError: If no store holds the key.
            WriteFailedError: If every holding store failed.
        """
        changes = normalize_patch(patch)
        if "shop_info" in changes:
            self._check_status_transition(key, changes["shop_info"])

        if is_email_key(key) or "role" in changes:
            email = key if is_email_key(key) else self.reconciler.get_by_id(key).email
            targets = self._holders_by_email(email)
        else:
            targets = self._holders_by_id(key)

        result = WriteResult(operation="update", key=key)
        for adapter, current in targets:
            if isinstance(current, AdapterOutcome):
                result.outcomes.append(current)
                continue
            try:
                updated = self._call(adapter, "update", current.id, changes)
            except AdapterUnavailableError as e:
                logger.warning(f"Update of {key} failed on {adapter.name}: {e.reason}")
                result.outcomes.append(
                    AdapterOutcome(adapter.store_kind, WriteOutcome.FAILED, current.id, e.reason)
                )
                continue
            if updated is None:
                result.outcomes.append(
                    AdapterOutcome(adapter.store_kind, WriteOutcome.NOT_FOUND, current.id)
                )
                continue
            result.outcomes.append(
                AdapterOutcome(adapter.store_kind, WriteOutcome.UPDATED, updated.id)
            )
            if result.record is None:
                result.record = updated

        return self._finish(result)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------
    def delete(self, key: str) -> WriteResult:
        """Delete the identity addressed by ``key`` from every holding store.

        Partial deletion is tolerated; a copy surviving in an unreachable
        store is reported through the FAILED outcome.

        Raises:
            IdentityNotFoundError: If no store holds the key.
            WriteFailedError: If every holding store failed.
        """
        targets = self._holders_by_email(key) if is_email_key(key) else self._holders_by_id(key)

        result = WriteResult(operation="delete", key=key)
        for adapter, current in targets:
            if isinstance(current, AdapterOutcome):
                result.outcomes.append(current)
                continue
            try:
                deleted = self._call(adapter, "delete", current.id)
            except AdapterUnavailableError as e:
                logger.warning(f"Delete of {key} failed on {adapter.name}: {e.reason}")
                result.outcomes.append(
                    AdapterOutcome(adapter.store_kind, WriteOutcome.FAILED, current.id, e.reason)
                )
                continue
            outcome = WriteOutcome.DELETED if deleted else WriteOutcome.NOT_FOUND
            result.outcomes.append(AdapterOutcome(adapter.store_kind, outcome, current.id))
            if deleted and result.record is None:
                result.record = current

        return self._finish(result)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _call(self, adapter: BaseStoreAdapter, operation: str, *args: Any) -> Any:
        """Run one adapter method on the store's lane, within its deadline."""
        return self.reconciler.call(adapter, lambda a: getattr(a, operation)(*args))

    def _holders(
        self, lookup: Callable[[BaseStoreAdapter], IdentityRecord | None]
    ) -> list[tuple[BaseStoreAdapter, IdentityRecord | AdapterOutcome]]:
        """Locate the record in every store at once.

        Stores that do not hold it, or cannot be asked in time, are returned
        as ready-made outcomes.
        """
        fan_out = self.reconciler.fan_out(lookup)
        answers = {adapter.store_kind: current for adapter, current in fan_out.answers}

        targets: list[tuple[BaseStoreAdapter, IdentityRecord | AdapterOutcome]] = []
        for adapter in self.adapters:
            kind = adapter.store_kind
            if kind in fan_out.reasons:
                outcome = AdapterOutcome(kind, WriteOutcome.FAILED, error=fan_out.reasons[kind])
                targets.append((adapter, outcome))
            elif answers.get(kind) is None:
                targets.append((adapter, AdapterOutcome(kind, WriteOutcome.NOT_FOUND)))
            else:
                targets.append((adapter, answers[kind]))
        return targets

    def _holders_by_email(self, email: str):
        return self._holders(lambda adapter: adapter.find_by_email(email))

    def _holders_by_id(self, record_id: str):
        return self._holders(lambda adapter: adapter.find_by_id(record_id))

    def _check_status_transition(self, key: str, shop_info: ShopInfo | None) -> None:
        if is_email_key(key):
            identity = self.reconciler.find_by_email(key)
        else:
            try:
                identity = self.reconciler.get_by_id(key)
            except IdentityNotFoundError:
                identity = None
        if identity is None or identity.record.shop_info is None:
            return
        current = identity.record.shop_info.status
        if shop_info is None or not current.can_transition_to(shop_info.status):
            target = shop_info.status.value if shop_info else "none"
            raise InvalidStatusTransitionError(
                f"Shop status of {identity.email} is {current.value}; cannot change it to {target}"
            )

    def _finish(self, result: WriteResult) -> WriteResult:
        if not result.succeeded:
            if result.failed_outcomes:
                logger.error(f"{result.operation} of {result.key} failed on every store")
                raise WriteFailedError(result)
            raise IdentityNotFoundError(result.key)

        if result.is_partial:
            logger.warning(
                f"Partial {result.operation} of {result.key}: persisted in "
                f"{[kind.value for kind in result.persisted_in]}, failed in "
                f"{[kind.value for kind in result.failed_in]}"
            )
        else:
            logger.info(
                f"{result.operation} of {result.key} persisted in "
                f"{[kind.value for kind in result.persisted_in]}"
            )
        return result
