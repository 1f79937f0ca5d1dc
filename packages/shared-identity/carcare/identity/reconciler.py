"""Reconciliation of divergent store views into one canonical identity.

Every lookup fans out to all configured adapters at once. Adapters that
fail or miss their deadline are dropped for that call only; the remaining
hits are merged by email.

Merge rules:
    - Non-role fields come from the highest-priority store holding the
      identity. Optional fields it lacks (phone, shop info) are filled from
      the next stores in priority order.
    - The shop status never regresses: a reviewed status held by any store
      beats a PENDING status held by a higher-priority store.
    - The role comes from RoleResolver (most privileged wins).
    - The canonical id is the highest-priority holder's id, so the durable
      id whenever the durable store holds the identity. Differing ids mark
      the identity as divergent and are logged, never raised.

Example:
    >>> reconciler = Reconciler(adapters)
    >>> identity = reconciler.get_by_email("driver@example.com")
    >>> identity.role, identity.provenance, identity.divergent
    (<Role.ADMIN: 'ADMIN'>, [<StoreKind.VOLATILE: 'volatile'>], False)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field, replace
from typing import Any, TypeVar

from carcare.identity.base import BaseStoreAdapter
from carcare.identity.config import StoreKind
from carcare.identity.exceptions import AdapterUnavailableError, IdentityNotFoundError
from carcare.identity.records import IdentityRecord, Role, ShopStatus
from carcare.identity.roles import Candidate, RoleResolver

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ReconciledIdentity:
    """Canonical view of one identity plus where it came from."""

    record: IdentityRecord
    provenance: list[StoreKind] = field(default_factory=list)
    store_ids: dict[StoreKind, str] = field(default_factory=dict)
    divergent: bool = False
    unavailable: list[StoreKind] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def email(self) -> str:
        return self.record.email

    @property
    def role(self) -> Role:
        return self.record.effective_role

    @property
    def is_admin(self) -> bool:
        """Return True for ADMIN and SUPER_ADMIN."""
        return self.role in (Role.ADMIN, Role.SUPER_ADMIN)

    @property
    def is_super_admin(self) -> bool:
        return self.role is Role.SUPER_ADMIN

    def to_dict(self) -> dict[str, Any]:
        """Serialize for responses, including provenance for operators."""
        return {
            **self.record.to_public_dict(),
            "provenance": [kind.value for kind in self.provenance],
            "storeIds": {kind.value: store_id for kind, store_id in self.store_ids.items()},
            "divergent": self.divergent,
            "unavailable": [kind.value for kind in self.unavailable],
            "warnings": list(self.warnings),
        }


@dataclass
class FanOutResult:
    """Per-store answers of one fan-out call."""

    answers: list[tuple[BaseStoreAdapter, Any]] = field(default_factory=list)
    unavailable: list[StoreKind] = field(default_factory=list)
    reasons: dict[StoreKind, str] = field(default_factory=dict)


class Reconciler:
    """Query every store concurrently and merge the answers.

    Each store runs on its own worker lane, so a store whose calls hang can
    only exhaust its own workers. Each adapter also gets its own deadline
    (``adapter.timeout``), measured from the moment the call was submitted,
    so a slow durable store cannot hold up the volatile fallback. A late
    call keeps running on its lane but its answer is ignored.

    Args:
        adapters: Store adapters in any order; they are sorted by priority.
        role_resolver: Policy for the effective role. Defaults to RoleResolver().
        workers_per_store: Threads in each store's lane.
    """

    def __init__(
        self,
        adapters: Sequence[BaseStoreAdapter],
        role_resolver: RoleResolver | None = None,
        workers_per_store: int = 4,
    ):
        if not adapters:
            raise ValueError("Reconciler needs at least one store adapter")
        kinds = [adapter.store_kind for adapter in adapters]
        if len(set(kinds)) != len(kinds):
            raise ValueError("Each store kind may be configured only once")

        self.adapters = sorted(adapters, key=lambda adapter: adapter.priority)
        self.role_resolver = role_resolver or RoleResolver()
        self._lanes: dict[StoreKind, ThreadPoolExecutor] = {
            adapter.store_kind: ThreadPoolExecutor(
                max_workers=workers_per_store,
                thread_name_prefix=f"identity-{adapter.store_kind.value}",
            )
            for adapter in self.adapters
        }

    def __enter__(self) -> Reconciler:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        """Shut every lane down without waiting for late adapters."""
        for lane in self._lanes.values():
            lane.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------
    def submit(self, adapter: BaseStoreAdapter, call: Callable[[BaseStoreAdapter], T]) -> Future[T]:
        """Schedule ``call`` on the adapter's own lane."""
        return self._lanes[adapter.store_kind].submit(call, adapter)

    def call(self, adapter: BaseStoreAdapter, call: Callable[[BaseStoreAdapter], T]) -> T:
        """Run ``call`` against one adapter within its deadline.

        Raises:
            AdapterUnavailableError: If the adapter is unavailable or late.
        """
        future = self.submit(adapter, call)
        try:
            return future.result(timeout=adapter.timeout)
        except FuturesTimeoutError:
            future.cancel()
            logger.warning(f"{adapter.name} missed its {adapter.timeout:.1f}s deadline")
            raise AdapterUnavailableError(
                adapter.store_kind, f"missed its {adapter.timeout:.1f}s deadline"
            ) from None

    def fan_out(self, call: Callable[[BaseStoreAdapter], T]) -> FanOutResult:
        """Run ``call`` against every adapter concurrently.

        Returns:
            Answers from adapters that responded in time, in priority order,
            plus the kinds that were unavailable for this call and why.
        """
        started = time.monotonic()
        futures: list[tuple[BaseStoreAdapter, Future[T]]] = [
            (adapter, self.submit(adapter, call)) for adapter in self.adapters
        ]

        result = FanOutResult()
        for adapter, future in futures:
            remaining = max(0.0, adapter.timeout - (time.monotonic() - started))
            try:
                result.answers.append((adapter, future.result(timeout=remaining)))
            except FuturesTimeoutError:
                future.cancel()
                logger.warning(
                    f"{adapter.name} missed its {adapter.timeout:.1f}s deadline; "
                    f"treating as unavailable"
                )
                result.unavailable.append(adapter.store_kind)
                result.reasons[adapter.store_kind] = f"missed its {adapter.timeout:.1f}s deadline"
            except AdapterUnavailableError as e:
                logger.warning(f"{adapter.name} unavailable: {e.reason}")
                result.unavailable.append(adapter.store_kind)
                result.reasons[adapter.store_kind] = e.reason
        return result

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def get_by_email(self, email: str) -> ReconciledIdentity:
        """Return the canonical identity for ``email``.

        Raises:
            IdentityNotFoundError: If no reachable store holds the email.
        """
        fan_out = self.fan_out(lambda adapter: adapter.find_by_email(email))
        candidates: list[Candidate] = [
            (adapter.store_kind, record) for adapter, record in fan_out.answers if record is not None
        ]
        if not candidates:
            raise IdentityNotFoundError(email)
        return self.merge(candidates, unavailable=fan_out.unavailable)

    def find_by_email(self, email: str) -> ReconciledIdentity | None:
        """Like get_by_email but returns None instead of raising."""
        try:
            return self.get_by_email(email)
        except IdentityNotFoundError:
            return None

    def get_by_id(self, record_id: str) -> ReconciledIdentity:
        """Return the canonical identity holding ``record_id`` in some store.

        Ids are store-local, so the id only locates the identity; the full
        view is rebuilt from its email across every store.

        Raises:
            IdentityNotFoundError: If no reachable store holds the id.
        """
        fan_out = self.fan_out(lambda adapter: adapter.find_by_id(record_id))
        hits = [record for _, record in fan_out.answers if record is not None]
        if not hits:
            raise IdentityNotFoundError(record_id)
        return self.get_by_email(hits[0].email)

    def list_all(self) -> list[ReconciledIdentity]:
        """Return every identity across all stores, one entry per email.

        Entries keep the order in which emails were first seen, walking the
        stores from highest to lowest priority.
        """
        fan_out = self.fan_out(lambda adapter: adapter.list_all())

        buckets: dict[str, list[Candidate]] = {}
        for adapter, records in fan_out.answers:
            for record in records:
                bucket = buckets.setdefault(record.email, [])
                if any(kind == adapter.store_kind for kind, _ in bucket):
                    logger.warning(
                        f"{adapter.name} holds {record.email} more than once; "
                        f"keeping {bucket[-1][1].id}"
                    )
                    continue
                bucket.append((adapter.store_kind, record))

        identities = [
            self.merge(candidates, unavailable=fan_out.unavailable)
            for candidates in buckets.values()
        ]
        logger.debug(f"Reconciled {len(identities)} identities from {len(self.adapters)} stores")
        return identities

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------
    def merge(
        self,
        candidates: Sequence[Candidate],
        unavailable: Sequence[StoreKind] = (),
    ) -> ReconciledIdentity:
        """Merge candidates sharing one email into a canonical identity.

        Raises:
            ValueError: If there are no candidates or their emails differ.
        """
        if not candidates:
            raise ValueError("Cannot merge an empty candidate set")
        ordered = sorted(candidates, key=lambda candidate: candidate[0].priority)
        base_kind, base = ordered[0]
        if any(record.email != base.email for _, record in ordered):
            raise ValueError("Cannot merge records with different emails")

        warnings: list[str] = []
        store_ids = {kind: record.id for kind, record in ordered}
        divergent = len(set(store_ids.values())) > 1
        if divergent:
            ids = ", ".join(f"{kind.value}={store_id}" for kind, store_id in store_ids.items())
            warning = f"Divergent ids for {base.email} ({ids}); using {base_kind.value} id {base.id}"
            warnings.append(warning)
            logger.warning(warning)

        merged = base
        if merged.phone is None:
            merged = replace(merged, phone=next((r.phone for _, r in ordered if r.phone), None))
        if merged.shop_info is None:
            merged = replace(
                merged, shop_info=next((r.shop_info for _, r in ordered if r.shop_info), None)
            )
        merged = self._keep_reviewed_status(merged, ordered, warnings)

        role = self.role_resolver.resolve(ordered)
        merged = replace(merged, role=role)

        return ReconciledIdentity(
            record=merged,
            provenance=[kind for kind, _ in ordered],
            store_ids=store_ids,
            divergent=divergent,
            unavailable=list(unavailable),
            warnings=warnings,
        )

    def _keep_reviewed_status(
        self,
        merged: IdentityRecord,
        ordered: Sequence[Candidate],
        warnings: list[str],
    ) -> IdentityRecord:
        if merged.shop_info is None or merged.shop_info.status is not ShopStatus.PENDING:
            return merged
        for kind, record in ordered:
            if record.shop_info is not None and record.shop_info.status.is_final:
                warning = (
                    f"Shop status for {merged.email} is PENDING in a higher-priority store "
                    f"but {record.shop_info.status.value} in {kind.value}; keeping "
                    f"{record.shop_info.status.value}"
                )
                warnings.append(warning)
                logger.warning(warning)
                return replace(merged, shop_info=merged.shop_info.with_status(record.shop_info.status))
        return merged
