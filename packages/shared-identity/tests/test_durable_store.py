"""Tests for carcare.identity.adapters.durable."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
import pytest
from carcare.identity.adapters.durable import MAX_RETRIES, SupabaseStoreAdapter
from carcare.identity.config import StoreConfig, StoreKind
from carcare.identity.exceptions import AdapterUnavailableError, DuplicateIdentityError
from carcare.identity.records import Role

USERS_URL = "https://xyz.supabase.co/rest/v1/users"


def make_response(status_code: int, payload=None, method: str = "GET") -> httpx.Response:
    """Build a real httpx response bound to a request."""
    return httpx.Response(
        status_code,
        json=payload if payload is not None else [],
        request=httpx.Request(method, USERS_URL),
    )


def user_row(**overrides):
    row = {
        "id": "user_1700000000000_ab12cd34ef",
        "email": "driver@example.com",
        "name": "Kim Driver",
        "password": "$2a$12$opaquehash",
        "phone": None,
        "userType": "CUSTOMER",
        "role": None,
        "shopInfo": None,
        "createdAt": "2024-05-01T09:00:00+00:00",
    }
    row.update(overrides)
    return row


@pytest.fixture
def durable_config() -> StoreConfig:
    return StoreConfig(
        store_kind=StoreKind.DURABLE,
        name="Supabase users",
        credentials={"api_key": "service-key"},
        connection_params={"url": "https://xyz.supabase.co"},
        timeout_seconds=2.0,
    )


@pytest.fixture
def mock_client() -> MagicMock:
    return MagicMock(spec=httpx.Client)


@pytest.fixture
def adapter(durable_config, mock_client) -> SupabaseStoreAdapter:
    return SupabaseStoreAdapter(durable_config, client=mock_client)


@pytest.fixture
def no_sleep():
    """Skip retry backoff delays."""
    with patch("carcare.identity.adapters.durable.time.sleep") as mock_sleep:
        yield mock_sleep


class TestSupabaseStoreAdapterInit:
    """Tests for adapter construction."""

    def test_store_kind(self) -> None:
        assert SupabaseStoreAdapter.store_kind is StoreKind.DURABLE

    def test_missing_credentials_disable_adapter(self) -> None:
        """Test missing url/key disables the adapter instead of raising."""
        config = StoreConfig(store_kind=StoreKind.DURABLE, name="Supabase users")

        adapter = SupabaseStoreAdapter(config)

        assert adapter.is_enabled is False
        assert "api_key" in config.error_message
        assert "url" in config.error_message

    def test_disabled_adapter_raises_on_every_call(self) -> None:
        adapter = SupabaseStoreAdapter(StoreConfig(store_kind=StoreKind.DURABLE, name="Supabase users"))

        with pytest.raises(AdapterUnavailableError, match="Missing Supabase configuration"):
            adapter.find_by_email("driver@example.com")
        with pytest.raises(AdapterUnavailableError):
            adapter.list_all()

    def test_lazy_client(self, durable_config) -> None:
        """Test the httpx client is built on first use with auth headers."""
        adapter = SupabaseStoreAdapter(durable_config)
        assert adapter._client is None

        client = adapter.client

        assert isinstance(client, httpx.Client)
        assert str(client.base_url).rstrip("/") == "https://xyz.supabase.co/rest/v1"
        assert client.headers["apikey"] == "service-key"
        assert client.headers["Authorization"] == "Bearer service-key"
        adapter.close()
        assert adapter._client is None

    def test_close_closes_client(self, adapter, mock_client) -> None:
        adapter.close()
        mock_client.close.assert_called_once()


class TestSupabaseStoreAdapterReads:
    """Tests for lookups against the users table."""

    def test_find_by_email(self, adapter, mock_client) -> None:
        mock_client.request.return_value = make_response(200, [user_row(role="ADMIN")])

        record = adapter.find_by_email("driver@example.com")

        assert record.email == "driver@example.com"
        assert record.role is Role.ADMIN
        mock_client.request.assert_called_once_with(
            "GET",
            "/users",
            params={"select": "*", "email": "eq.driver@example.com", "limit": "1"},
        )

    def test_find_by_email_missing(self, adapter, mock_client) -> None:
        mock_client.request.return_value = make_response(200, [])
        assert adapter.find_by_email("nobody@example.com") is None

    def test_find_by_id(self, adapter, mock_client) -> None:
        mock_client.request.return_value = make_response(200, [user_row()])

        record = adapter.find_by_id("user_1700000000000_ab12cd34ef")

        assert record.id == "user_1700000000000_ab12cd34ef"
        params = mock_client.request.call_args.kwargs["params"]
        assert params["id"] == "eq.user_1700000000000_ab12cd34ef"

    def test_list_all_skips_malformed_rows(self, adapter, mock_client) -> None:
        """Test rows without an email are skipped, not fatal."""
        mock_client.request.return_value = make_response(
            200, [user_row(), {"id": "user_broken", "name": "No Email"}]
        )

        records = adapter.list_all()

        assert [r.email for r in records] == ["driver@example.com"]

    def test_non_array_response_is_unavailable(self, adapter, mock_client) -> None:
        mock_client.request.return_value = make_response(200, {"message": "unexpected"})

        with pytest.raises(AdapterUnavailableError, match="JSON array"):
            adapter.list_all()


class TestSupabaseStoreAdapterRetries:
    """Tests for transient failure handling."""

    def test_retries_server_errors(self, adapter, mock_client, no_sleep) -> None:
        """Test 5xx responses are retried before succeeding."""
        mock_client.request.side_effect = [
            make_response(503),
            make_response(200, [user_row()]),
        ]

        record = adapter.find_by_email("driver@example.com")

        assert record is not None
        assert mock_client.request.call_count == 2
        no_sleep.assert_called_once()

    def test_retries_transport_errors(self, adapter, mock_client, no_sleep) -> None:
        mock_client.request.side_effect = [
            httpx.ConnectError("connection refused"),
            make_response(200, []),
        ]

        assert adapter.find_by_email("driver@example.com") is None
        assert mock_client.request.call_count == 2

    def test_exhausted_retries_are_unavailable(self, adapter, mock_client, no_sleep) -> None:
        """Test the adapter gives up after MAX_RETRIES extra attempts."""
        mock_client.request.side_effect = httpx.ReadTimeout("timed out")

        with pytest.raises(AdapterUnavailableError) as exc_info:
            adapter.find_by_email("driver@example.com")

        assert exc_info.value.store_kind is StoreKind.DURABLE
        assert mock_client.request.call_count == MAX_RETRIES + 1
        assert [c.args[0] for c in no_sleep.call_args_list] == [0.2, 0.4]

    def test_client_errors_are_not_retried(self, adapter, mock_client, no_sleep) -> None:
        """Test 4xx responses fail immediately."""
        mock_client.request.return_value = make_response(401)

        with pytest.raises(AdapterUnavailableError, match="HTTP 401"):
            adapter.list_all()

        assert mock_client.request.call_count == 1
        no_sleep.assert_not_called()


class TestSupabaseStoreAdapterWrites:
    """Tests for writes against the users table."""

    def test_create(self, adapter, mock_client, make_record) -> None:
        """Test create assigns an id and posts the camelCase row."""
        mock_client.request.side_effect = lambda method, url, **kwargs: make_response(
            201, [kwargs["json"]], method
        )

        created = adapter.create(make_record())

        assert created.id.startswith("user_")
        method, url = mock_client.request.call_args.args
        kwargs = mock_client.request.call_args.kwargs
        assert (method, url) == ("POST", "/users")
        assert kwargs["json"]["email"] == "driver@example.com"
        assert kwargs["json"]["userType"] == "CUSTOMER"
        assert kwargs["headers"] == {"Prefer": "return=representation"}

    def test_create_conflict_raises_duplicate(self, adapter, mock_client, make_record) -> None:
        """Test a unique violation maps to DuplicateIdentityError."""
        mock_client.request.return_value = make_response(409, {"code": "23505"}, "POST")

        with pytest.raises(DuplicateIdentityError) as exc_info:
            adapter.create(make_record())

        assert exc_info.value.email == "driver@example.com"

    def test_update(self, adapter, mock_client) -> None:
        mock_client.request.return_value = make_response(200, [user_row(role="SUPER_ADMIN")], "PATCH")

        updated = adapter.update("user_1700000000000_ab12cd34ef", {"role": "SUPER_ADMIN"})

        assert updated.role is Role.SUPER_ADMIN
        kwargs = mock_client.request.call_args.kwargs
        assert kwargs["params"] == {"id": "eq.user_1700000000000_ab12cd34ef"}
        assert kwargs["json"]["role"] == "SUPER_ADMIN"
        assert "updatedAt" in kwargs["json"]

    def test_update_missing_returns_none(self, adapter, mock_client) -> None:
        mock_client.request.return_value = make_response(200, [], "PATCH")
        assert adapter.update("user_missing", {"name": "X"}) is None

    def test_delete(self, adapter, mock_client) -> None:
        mock_client.request.return_value = make_response(200, [user_row()], "DELETE")
        assert adapter.delete("user_1700000000000_ab12cd34ef") is True

        mock_client.request.return_value = make_response(200, [], "DELETE")
        assert adapter.delete("user_1700000000000_ab12cd34ef") is False
