"""Adapter registry for managing available store adapter types."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from carcare.identity.config import StoreConfig, StoreKind

if TYPE_CHECKING:
    from carcare.identity.adapters.volatile import VolatileStore
    from carcare.identity.base import BaseStoreAdapter

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Registry of available store adapter implementations.

    Singleton pattern for global adapter type registration. The registry
    holds adapter classes only; adapter instances (and the volatile store
    they may share) are always built explicitly by the caller.

    Example:
        # Register an adapter type
        registry = AdapterRegistry()
        registry.register(StoreKind.DURABLE, SupabaseStoreAdapter)

        # Create an adapter instance
        config = StoreConfig(store_kind=StoreKind.DURABLE, name="Supabase users")
        adapter = registry.create(config)
    """

    _instance: AdapterRegistry | None = None
    _adapters: dict[StoreKind, type[BaseStoreAdapter]]

    def __new__(cls) -> AdapterRegistry:
        """Singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._adapters = {}
        return cls._instance

    def register(
        self,
        store_kind: StoreKind,
        adapter_class: type[BaseStoreAdapter],
    ) -> None:
        """Register an adapter implementation.

        Args:
            store_kind: The kind of store.
            adapter_class: The adapter class to use.
        """
        self._adapters[store_kind] = adapter_class
        logger.debug(f"Registered store adapter: {store_kind.value}")

    def get(self, store_kind: StoreKind) -> type[BaseStoreAdapter] | None:
        """Get an adapter class by store kind, or None if not registered."""
        return self._adapters.get(store_kind)

    def create(self, config: StoreConfig, **kwargs: Any) -> BaseStoreAdapter:
        """Create an adapter instance from configuration.

        Args:
            config: Store configuration.
            **kwargs: Extra constructor arguments (e.g. a shared volatile store).

        Returns:
            Initialized adapter instance.

        Raises:
            ValueError: If the store kind is not registered.
        """
        adapter_class = self.get(config.store_kind)
        if adapter_class is None:
            raise ValueError(f"No store adapter registered for kind: {config.store_kind.value}")
        return adapter_class(config, **kwargs)


# Global registry instance
_registry = AdapterRegistry()


def get_registry() -> AdapterRegistry:
    """Get the global adapter registry."""
    return _registry


def build_adapters(
    configs: Iterable[StoreConfig],
    volatile_store: VolatileStore,
    registry: AdapterRegistry | None = None,
) -> list[BaseStoreAdapter]:
    """Instantiate adapters for ``configs`` in priority order.

    Args:
        configs: Adapter configurations, typically from
            ``IdentityStoreSettings.store_configs()``.
        volatile_store: The process-wide in-memory store handed to the
            volatile adapter.
        registry: Registry to resolve classes from. Defaults to the global one.

    Returns:
        Adapters sorted from highest to lowest priority.

    Raises:
        ValueError: If two configurations name the same store kind.
    """
    # Importing the adapters package registers the bundled adapters
    import carcare.identity.adapters  # noqa: F401

    registry = registry or get_registry()
    adapters: list[BaseStoreAdapter] = []
    seen: set[StoreKind] = set()
    for config in sorted(configs, key=lambda c: c.store_kind.priority):
        if config.store_kind in seen:
            raise ValueError(f"Store kind configured twice: {config.store_kind.value}")
        seen.add(config.store_kind)

        if config.store_kind == StoreKind.VOLATILE:
            adapter = registry.create(config, store=volatile_store)
        else:
            adapter = registry.create(config)
        if not adapter.is_enabled:
            logger.warning(f"Store adapter {config.name} disabled: {config.error_message}")
        adapters.append(adapter)
    return adapters
