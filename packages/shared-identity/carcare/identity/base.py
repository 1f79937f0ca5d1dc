"""Base store adapter abstract class."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from carcare.identity.config import StoreConfig, StoreKind
from carcare.identity.exceptions import AdapterUnavailableError
from carcare.identity.records import IdentityRecord

logger = logging.getLogger(__name__)


class BaseStoreAdapter(ABC):
    """Abstract base class for identity store adapters.

    Every backing store exposes the same lookup/write primitives so callers
    compose a priority-ordered list of adapters and never branch on which
    concrete store is in use.

    Subclasses must implement:
    - find_by_email(): Exact, case-sensitive lookup by email
    - find_by_id(): Lookup by this store's own id
    - create(): Persist a new record
    - update(): Apply a patch to a record
    - delete(): Remove a record
    - list_all(): Return every record held by the store

    Subclasses must set the class attribute:
    - store_kind: The StoreKind enum value for this adapter

    Any call may raise AdapterUnavailableError. Callers treat it as "no data
    from this store" for the current operation, never as a request failure.

    Optional overrides:
    - _cleanup_client(): Custom cleanup logic for the underlying client

    Can be used as a context manager:
        with SupabaseStoreAdapter(config) as adapter:
            record = adapter.find_by_email("driver@example.com")
    """

    store_kind: StoreKind

    def __init_subclass__(cls, **kwargs: Any) -> None:
        """Validate that subclasses define store_kind."""
        super().__init_subclass__(**kwargs)
        # Skip validation for abstract subclasses
        if ABC in cls.__bases__:
            return
        if not hasattr(cls, "store_kind") or cls.store_kind is None:
            raise TypeError(f"{cls.__name__} must define a 'store_kind' class attribute")

    def __init__(self, config: StoreConfig):
        """Initialize adapter with configuration.

        Args:
            config: Store configuration including credentials and settings.

        Raises:
            ValueError: If the configuration is for a different store kind.
        """
        if config.store_kind != self.store_kind:
            raise ValueError(
                f"{type(self).__name__} cannot be built from a "
                f"{config.store_kind.value} configuration"
            )
        self.config = config
        self._client: Any = None

    def __enter__(self) -> BaseStoreAdapter:
        """Enter context manager."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit context manager and cleanup resources."""
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.config.name!r}, enabled={self.is_enabled})"

    @property
    def name(self) -> str:
        """Human-readable adapter name."""
        return self.config.name

    @property
    def priority(self) -> int:
        """Lower value means higher priority."""
        return self.store_kind.priority

    @property
    def timeout(self) -> float:
        """Deadline in seconds for a single call."""
        return self.config.timeout_seconds

    @property
    def is_enabled(self) -> bool:
        """Return False when configuration permanently disabled this adapter."""
        return self.config.is_enabled

    def _ensure_enabled(self) -> None:
        """Raise AdapterUnavailableError if this adapter was disabled."""
        if not self.config.is_enabled:
            raise AdapterUnavailableError(
                self.store_kind, self.config.error_message or "adapter disabled"
            )

    @abstractmethod
    def find_by_email(self, email: str) -> IdentityRecord | None:
        """Return the record holding ``email`` or None.

        Raises:
            AdapterUnavailableError: If the store cannot be reached.
        """
        pass  # pragma: no cover

    @abstractmethod
    def find_by_id(self, record_id: str) -> IdentityRecord | None:
        """Return the record with this store-local id or None.

        Raises:
            AdapterUnavailableError: If the store cannot be reached.
        """
        pass  # pragma: no cover

    @abstractmethod
    def create(self, record: IdentityRecord) -> IdentityRecord:
        """Persist a new record and return it as stored.

        A record with an empty id receives a fresh id from this store.

        Raises:
            AdapterUnavailableError: If the store cannot be reached.
            DuplicateIdentityError: If the store already holds the email.
        """
        pass  # pragma: no cover

    @abstractmethod
    def update(self, record_id: str, patch: dict[str, Any]) -> IdentityRecord | None:
        """Apply ``patch`` to the record and return it, or None if absent.

        Raises:
            AdapterUnavailableError: If the store cannot be reached.
        """
        pass  # pragma: no cover

    @abstractmethod
    def delete(self, record_id: str) -> bool:
        """Delete the record. Returns False if the store did not hold it.

        Raises:
            AdapterUnavailableError: If the store cannot be reached.
        """
        pass  # pragma: no cover

    @abstractmethod
    def list_all(self) -> list[IdentityRecord]:
        """Return every record held by the store.

        Raises:
            AdapterUnavailableError: If the store cannot be reached.
        """
        pass  # pragma: no cover

    def _cleanup_client(self) -> None:  # noqa: B027
        """Clean up the client connection.

        Override in subclasses that hold network or file handles.
        This is called by close() before resetting internal state.
        """
        pass

    def test_connection(self) -> bool:
        """Test whether the store answers a read.

        Returns:
            True if a listing succeeded.
        """
        try:
            self.list_all()
            return True
        except AdapterUnavailableError as e:
            logger.warning(f"Connection test failed for {self.config.name}: {e}")
            return False

    def close(self) -> None:
        """Close the connection and cleanup resources."""
        logger.debug(f"Closing store adapter: {self.config.name}")
        self._cleanup_client()
        self._client = None
