"""Tests for carcare.identity.registry and carcare.identity.base."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from carcare.identity.adapters.durable import SupabaseStoreAdapter
from carcare.identity.adapters.local_file import LocalFileStoreAdapter
from carcare.identity.adapters.volatile import VolatileStore, VolatileStoreAdapter
from carcare.identity.base import BaseStoreAdapter
from carcare.identity.config import IdentityStoreSettings, StoreConfig, StoreKind
from carcare.identity.exceptions import AdapterUnavailableError
from carcare.identity.registry import AdapterRegistry, build_adapters, get_registry


class TestAdapterRegistry:
    """Tests for AdapterRegistry singleton."""

    def test_singleton_pattern(self, fresh_registry) -> None:
        """Test registry is a singleton."""
        assert AdapterRegistry() is fresh_registry

    def test_register_and_get(self, fresh_registry) -> None:
        fresh_registry.register(StoreKind.VOLATILE, VolatileStoreAdapter)

        assert fresh_registry.get(StoreKind.VOLATILE) is VolatileStoreAdapter

    def test_register_replaces_previous_class(self, fresh_registry) -> None:
        """Test registering a kind again swaps the adapter class."""

        class PatchedVolatileAdapter(VolatileStoreAdapter):
            pass

        fresh_registry.register(StoreKind.VOLATILE, VolatileStoreAdapter)
        fresh_registry.register(StoreKind.VOLATILE, PatchedVolatileAdapter)

        assert fresh_registry.get(StoreKind.VOLATILE) is PatchedVolatileAdapter

    def test_get_unregistered_returns_none(self, fresh_registry) -> None:
        assert fresh_registry.get(StoreKind.LOCAL_FILE) is None

    def test_create_passes_kwargs(self, fresh_registry, volatile_store) -> None:
        """Test extra constructor arguments reach the adapter."""
        fresh_registry.register(StoreKind.VOLATILE, VolatileStoreAdapter)
        config = StoreConfig(store_kind=StoreKind.VOLATILE, name="In-memory users")

        adapter = fresh_registry.create(config, store=volatile_store)

        assert isinstance(adapter, VolatileStoreAdapter)
        assert adapter.store is volatile_store

    def test_create_unregistered_raises(self, fresh_registry) -> None:
        config = StoreConfig(store_kind=StoreKind.DURABLE, name="Supabase users")

        with pytest.raises(ValueError) as exc_info:
            fresh_registry.create(config)

        assert "No store adapter registered for kind" in str(exc_info.value)
        assert "durable" in str(exc_info.value)


class TestGetRegistry:
    """Tests for the global registry."""

    def test_bundled_adapters_registered(self) -> None:
        """Test importing the adapters registers all three kinds."""
        import carcare.identity.adapters  # noqa: F401

        registry = get_registry()

        assert registry.get(StoreKind.DURABLE) is SupabaseStoreAdapter
        assert registry.get(StoreKind.VOLATILE) is VolatileStoreAdapter
        assert registry.get(StoreKind.LOCAL_FILE) is LocalFileStoreAdapter


class TestBuildAdapters:
    """Tests for build_adapters."""

    def test_builds_in_priority_order(self, tmp_path, volatile_store) -> None:
        """Test adapters come back sorted durable, volatile, local file."""
        settings = IdentityStoreSettings(
            supabase_url="https://xyz.supabase.co",
            supabase_key="service-key",
            data_dir=tmp_path,
        )
        configs = list(reversed(settings.store_configs()))

        adapters = build_adapters(configs, volatile_store=volatile_store)

        assert [a.store_kind for a in adapters] == [
            StoreKind.DURABLE,
            StoreKind.VOLATILE,
            StoreKind.LOCAL_FILE,
        ]
        assert adapters[1].store is volatile_store
        assert adapters[2].path == tmp_path / "users.json"

    def test_disabled_durable_is_kept(self, volatile_store) -> None:
        """Test an unconfigured durable store is built but disabled."""
        settings = IdentityStoreSettings(environment="production")

        adapters = build_adapters(settings.store_configs(), volatile_store=volatile_store)

        assert [a.store_kind for a in adapters] == [StoreKind.DURABLE, StoreKind.VOLATILE]
        assert adapters[0].is_enabled is False

    def test_duplicate_kind_raises(self, volatile_store) -> None:
        configs = [
            StoreConfig(store_kind=StoreKind.VOLATILE, name="one"),
            StoreConfig(store_kind=StoreKind.VOLATILE, name="two"),
        ]
        with pytest.raises(ValueError, match="configured twice"):
            build_adapters(configs, volatile_store=volatile_store)


class TestBaseStoreAdapter:
    """Tests for BaseStoreAdapter behaviour shared by all adapters."""

    def test_subclass_without_store_kind_raises(self) -> None:
        """Test concrete subclasses must define store_kind."""
        with pytest.raises(TypeError, match="store_kind"):

            class NoKindAdapter(BaseStoreAdapter):
                store_kind = None  # type: ignore[assignment]

    def test_config_kind_mismatch_raises(self) -> None:
        config = StoreConfig(store_kind=StoreKind.DURABLE, name="Supabase users")
        with pytest.raises(ValueError, match="durable"):
            VolatileStoreAdapter(config)

    def test_properties(self, volatile_adapter) -> None:
        assert volatile_adapter.name == "In-memory users"
        assert volatile_adapter.priority == StoreKind.VOLATILE.priority
        assert volatile_adapter.timeout == 5.0
        assert volatile_adapter.is_enabled is True
        assert "In-memory users" in repr(volatile_adapter)

    def test_disabled_adapter_raises_unavailable(self) -> None:
        """Test a disabled adapter answers every call with AdapterUnavailableError."""
        config = StoreConfig(
            store_kind=StoreKind.VOLATILE,
            name="In-memory users",
            is_enabled=False,
            error_message="turned off",
        )
        adapter = VolatileStoreAdapter(config, store=VolatileStore())

        with pytest.raises(AdapterUnavailableError, match="turned off"):
            adapter.find_by_email("a@example.com")

    def test_test_connection(self, volatile_adapter) -> None:
        assert volatile_adapter.test_connection() is True

    def test_test_connection_failure(self, make_fake_adapter) -> None:
        adapter = make_fake_adapter(StoreKind.DURABLE)
        adapter.unavailable = True

        assert adapter.test_connection() is False

    def test_context_manager_closes(self, volatile_adapter) -> None:
        """Test leaving the context runs the cleanup hook."""
        with patch.object(volatile_adapter, "_cleanup_client") as cleanup:
            with volatile_adapter as adapter:
                assert adapter is volatile_adapter

        cleanup.assert_called_once()
        assert volatile_adapter._client is None
