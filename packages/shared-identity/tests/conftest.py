"""Pytest fixtures for shared-identity tests."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Generator
from typing import Any

import pytest
from carcare.identity.adapters.local_file import LocalFileStoreAdapter
from carcare.identity.adapters.volatile import VolatileStore, VolatileStoreAdapter
from carcare.identity.base import BaseStoreAdapter
from carcare.identity.config import StoreConfig, StoreKind
from carcare.identity.exceptions import AdapterUnavailableError, DuplicateIdentityError
from carcare.identity.records import IdentityRecord, generate_record_id
from carcare.identity.registry import AdapterRegistry


class FakeStoreAdapter(BaseStoreAdapter):
    """In-memory adapter standing in for any store kind.

    ``unavailable`` makes every call raise AdapterUnavailableError and
    ``delay`` makes every call sleep first, to exercise deadlines.
    """

    store_kind = StoreKind.DURABLE

    def __init__(self, config: StoreConfig):
        # Bypass the kind check so one fake can play every store
        self.store_kind = config.store_kind
        super().__init__(config)
        self.records: dict[str, IdentityRecord] = {}
        self.unavailable = False
        self.delay = 0.0
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self.delay:
            time.sleep(self.delay)
        if self.unavailable:
            raise AdapterUnavailableError(self.store_kind, "simulated outage")

    def seed(self, record: IdentityRecord) -> IdentityRecord:
        """Put a record straight into the store."""
        if not record.id:
            record = record.with_id(generate_record_id())
        self.records[record.id] = record
        return record

    def find_by_email(self, email: str) -> IdentityRecord | None:
        self._enter("find_by_email")
        return next((r for r in self.records.values() if r.email == email), None)

    def find_by_id(self, record_id: str) -> IdentityRecord | None:
        self._enter("find_by_id")
        return self.records.get(record_id)

    def create(self, record: IdentityRecord) -> IdentityRecord:
        self._enter("create")
        with self._lock:
            if any(r.email == record.email for r in self.records.values()):
                raise DuplicateIdentityError(record.email)
            return self.seed(record)

    def update(self, record_id: str, patch: dict[str, Any]) -> IdentityRecord | None:
        self._enter("update")
        current = self.records.get(record_id)
        if current is None:
            return None
        self.records[record_id] = current.apply_patch(patch)
        return self.records[record_id]

    def delete(self, record_id: str) -> bool:
        self._enter("delete")
        return self.records.pop(record_id, None) is not None

    def list_all(self) -> list[IdentityRecord]:
        self._enter("list_all")
        return list(self.records.values())


@pytest.fixture
def make_fake_adapter() -> Callable[..., FakeStoreAdapter]:
    """Factory for fake adapters of a given store kind."""

    def _make(store_kind: StoreKind, timeout_seconds: float = 1.0) -> FakeStoreAdapter:
        return FakeStoreAdapter(
            StoreConfig(
                store_kind=store_kind,
                name=f"Fake {store_kind.value}",
                timeout_seconds=timeout_seconds,
            )
        )

    return _make


@pytest.fixture
def fake_adapters(make_fake_adapter) -> dict[StoreKind, FakeStoreAdapter]:
    """One fake adapter per store kind."""
    return {kind: make_fake_adapter(kind) for kind in StoreKind}


@pytest.fixture
def volatile_store() -> Generator[VolatileStore, None, None]:
    """A fresh in-memory store, reset after the test."""
    store = VolatileStore()
    yield store
    store.reset()


@pytest.fixture
def volatile_adapter(volatile_store: VolatileStore) -> VolatileStoreAdapter:
    config = StoreConfig(store_kind=StoreKind.VOLATILE, name="In-memory users")
    return VolatileStoreAdapter(config, store=volatile_store)


@pytest.fixture
def local_file_adapter(tmp_path) -> LocalFileStoreAdapter:
    config = StoreConfig(
        store_kind=StoreKind.LOCAL_FILE,
        name="Local users file",
        connection_params={"path": str(tmp_path / "data" / "users.json")},
    )
    return LocalFileStoreAdapter(config)


@pytest.fixture
def make_record() -> Callable[..., IdentityRecord]:
    """Factory for identity records with sensible defaults."""

    def _make(email: str = "driver@example.com", **kwargs: Any) -> IdentityRecord:
        kwargs.setdefault("name", "Kim Driver")
        kwargs.setdefault("password_hash", "$2a$12$opaquehash")
        return IdentityRecord.new(email=email, **kwargs)

    return _make


@pytest.fixture
def fresh_registry() -> Generator[AdapterRegistry, None, None]:
    """Create a fresh registry instance for testing.

    Restores the singleton after the test.
    """
    original = AdapterRegistry._instance
    AdapterRegistry._instance = None
    registry = AdapterRegistry()
    yield registry
    AdapterRegistry._instance = original
