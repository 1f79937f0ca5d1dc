"""Process-local in-memory identity store."""

from __future__ import annotations

import logging
import threading
from typing import Any

from carcare.identity.base import BaseStoreAdapter
from carcare.identity.config import StoreConfig, StoreKind
from carcare.identity.exceptions import DuplicateIdentityError
from carcare.identity.records import IdentityRecord, generate_record_id
from carcare.identity.registry import get_registry

logger = logging.getLogger(__name__)


class VolatileStore:
    """Mutable in-memory record table shared by every request in a process.

    The store is constructed explicitly and injected; its lifecycle follows
    the owning service. Every read-modify-write runs under the store's own
    lock, and records leave the store as immutable copies.

    Two creates for the same email are serialised by the lock; the second
    one raises DuplicateIdentityError, so concurrent registrations leave
    exactly one record.

    Example:
        >>> store = VolatileStore()
        >>> record = store.insert(IdentityRecord.new(email="a@x.com", name="A"))
        >>> store.find_by_email("a@x.com").id == record.id
        True
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, IdentityRecord] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def find_by_email(self, email: str) -> IdentityRecord | None:
        with self._lock:
            for record in self._records.values():
                if record.email == email:
                    return record
            return None

    def find_by_id(self, record_id: str) -> IdentityRecord | None:
        with self._lock:
            return self._records.get(record_id)

    def insert(self, record: IdentityRecord) -> IdentityRecord:
        """Insert a record, assigning an id when it has none.

        Raises:
            DuplicateIdentityError: If the email or id is already held.
        """
        with self._lock:
            if self.find_by_email(record.email) is not None:
                raise DuplicateIdentityError(record.email)
            if not record.id:
                record = record.with_id(generate_record_id())
            elif record.id in self._records:
                raise DuplicateIdentityError(record.email)
            self._records[record.id] = record
            return record

    def update(self, record_id: str, patch: dict[str, Any]) -> IdentityRecord | None:
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                return None
            updated = current.apply_patch(patch)
            self._records[record_id] = updated
            return updated

    def delete(self, record_id: str) -> bool:
        with self._lock:
            return self._records.pop(record_id, None) is not None

    def all(self) -> list[IdentityRecord]:
        with self._lock:
            return list(self._records.values())

    def reset(self) -> None:
        """Drop every record. Test hook; the service never calls this."""
        with self._lock:
            self._records.clear()


class VolatileStoreAdapter(BaseStoreAdapter):
    """Adapter over an injected VolatileStore.

    Memory access never fails for transport reasons, so the only
    AdapterUnavailableError this adapter raises comes from a disabled
    configuration.

    Example:
        store = VolatileStore()
        config = StoreConfig(store_kind=StoreKind.VOLATILE, name="In-memory users")
        adapter = VolatileStoreAdapter(config, store=store)
    """

    store_kind = StoreKind.VOLATILE

    def __init__(self, config: StoreConfig, store: VolatileStore | None = None):
        """Initialize the adapter.

        Args:
            config: Store configuration.
            store: Shared in-memory store. A private one is created when omitted.
        """
        super().__init__(config)
        self.store = store if store is not None else VolatileStore()

    def find_by_email(self, email: str) -> IdentityRecord | None:
        self._ensure_enabled()
        return self.store.find_by_email(email)

    def find_by_id(self, record_id: str) -> IdentityRecord | None:
        self._ensure_enabled()
        return self.store.find_by_id(record_id)

    def create(self, record: IdentityRecord) -> IdentityRecord:
        self._ensure_enabled()
        created = self.store.insert(record)
        logger.info(f"Stored identity in memory: {created.id} {created.email}")
        return created

    def update(self, record_id: str, patch: dict[str, Any]) -> IdentityRecord | None:
        self._ensure_enabled()
        return self.store.update(record_id, patch)

    def delete(self, record_id: str) -> bool:
        self._ensure_enabled()
        return self.store.delete(record_id)

    def list_all(self) -> list[IdentityRecord]:
        self._ensure_enabled()
        return self.store.all()


# Auto-register adapter
get_registry().register(StoreKind.VOLATILE, VolatileStoreAdapter)
