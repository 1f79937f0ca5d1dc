"""Supabase (PostgREST) identity store."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from carcare.identity.base import BaseStoreAdapter
from carcare.identity.config import StoreConfig, StoreKind
from carcare.identity.exceptions import AdapterUnavailableError, DuplicateIdentityError
from carcare.identity.records import IdentityRecord, generate_record_id, patch_to_row
from carcare.identity.registry import get_registry

logger = logging.getLogger(__name__)

USERS_TABLE = "/users"

# Transport retries (in seconds). Only this adapter retries; the
# reconciler enforces its own deadline on top.
MAX_RETRIES = 2
BACKOFF_BASE_SECONDS = 0.2

# Required credential / connection keys
REQUIRED_CREDENTIALS = ("api_key",)
REQUIRED_CONNECTION_PARAMS = ("url",)


class SupabaseStoreAdapter(BaseStoreAdapter):
    """Adapter for the durable Supabase ``users`` table.

    Talks to the PostgREST endpoint directly with httpx. Missing credentials
    permanently disable the adapter instead of failing the process; every
    call then raises AdapterUnavailableError with the configuration message.

    Transport errors and 5xx responses are retried with exponential backoff
    (MAX_RETRIES extra attempts). Any other non-success status, or a retry
    budget running out, raises AdapterUnavailableError.

    Required credentials:
        - api_key: Supabase service or anon key

    Required connection_params:
        - url: Project URL, e.g. https://xyz.supabase.co

    Example:
        >>> config = StoreConfig(
        ...     store_kind=StoreKind.DURABLE,
        ...     name="Supabase users",
        ...     credentials={"api_key": "service-role-key"},
        ...     connection_params={"url": "https://xyz.supabase.co"},
        ... )
        >>> adapter = SupabaseStoreAdapter(config)
        >>> adapter.find_by_email("driver@example.com")
    """

    store_kind = StoreKind.DURABLE

    def __init__(self, config: StoreConfig, client: httpx.Client | None = None):
        """Initialize Supabase adapter.

        Args:
            config: Store configuration.
            client: Optional preconfigured httpx client. Created lazily otherwise.
        """
        super().__init__(config)
        missing = [key for key in REQUIRED_CREDENTIALS if not config.credentials.get(key)]
        missing += [
            key for key in REQUIRED_CONNECTION_PARAMS if not config.connection_params.get(key)
        ]
        if missing and config.is_enabled:
            config.is_enabled = False
            config.error_message = f"Missing Supabase configuration: {', '.join(missing)}"
            logger.warning(f"{config.name} disabled: {config.error_message}")
        self._client = client

    @property
    def client(self) -> httpx.Client:
        """Lazy-initialize the PostgREST client."""
        self._ensure_enabled()
        if self._client is None:
            base_url = str(self.config.connection_params["url"]).rstrip("/")
            api_key = self.config.credentials["api_key"]
            self._client = httpx.Client(
                base_url=f"{base_url}/rest/v1",
                headers={
                    "apikey": api_key,
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 5.0)),
            )
            logger.info(f"Connected to Supabase ({base_url})")
        return self._client

    def _request(self, method: str, **kwargs: Any) -> httpx.Response:
        """Send a request to the users table, retrying transient failures.

        Raises:
            DuplicateIdentityError: On 409 Conflict (unique email violated).
            AdapterUnavailableError: On any other failure.
        """
        client = self.client
        attempt = 0
        while True:
            try:
                response = client.request(method, USERS_TABLE, **kwargs)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                if status_code == 409:
                    raise DuplicateIdentityError(str(kwargs.get("json", {}).get("email", ""))) from e
                if status_code < 500 or attempt >= MAX_RETRIES:
                    raise AdapterUnavailableError(
                        self.store_kind, f"{method} users returned HTTP {status_code}"
                    ) from e
                reason = f"HTTP {status_code}"
            except httpx.TransportError as e:
                if attempt >= MAX_RETRIES:
                    raise AdapterUnavailableError(
                        self.store_kind, f"{method} users failed: {e}"
                    ) from e
                reason = type(e).__name__

            attempt += 1
            delay = BACKOFF_BASE_SECONDS * (2 ** (attempt - 1))
            logger.warning(
                f"Supabase {method} users failed ({reason}), "
                f"retrying in {delay:.1f}s (attempt {attempt}/{MAX_RETRIES})"
            )
            time.sleep(delay)

    def _rows(self, response: httpx.Response) -> list[dict[str, Any]]:
        try:
            data = response.json()
        except ValueError as e:
            raise AdapterUnavailableError(self.store_kind, f"invalid JSON response: {e}") from e
        if not isinstance(data, list):
            raise AdapterUnavailableError(self.store_kind, "expected a JSON array response")
        return data

    def _to_records(self, rows: list[dict[str, Any]]) -> list[IdentityRecord]:
        records = []
        for row in rows:
            try:
                records.append(IdentityRecord.from_row(row))
            except ValueError as e:
                logger.warning(f"Skipping malformed Supabase user row {row.get('id')}: {e}")
        return records

    def _find_one(self, column: str, value: str) -> IdentityRecord | None:
        response = self._request(
            "GET", params={"select": "*", column: f"eq.{value}", "limit": "1"}
        )
        records = self._to_records(self._rows(response))
        return records[0] if records else None

    def find_by_email(self, email: str) -> IdentityRecord | None:
        return self._find_one("email", email)

    def find_by_id(self, record_id: str) -> IdentityRecord | None:
        return self._find_one("id", record_id)

    def create(self, record: IdentityRecord) -> IdentityRecord:
        if not record.id:
            record = record.with_id(generate_record_id())
        response = self._request(
            "POST",
            json=record.to_row(),
            headers={"Prefer": "return=representation"},
        )
        records = self._to_records(self._rows(response))
        created = records[0] if records else record
        logger.info(f"Stored identity in Supabase: {created.id} {created.email}")
        return created

    def update(self, record_id: str, patch: dict[str, Any]) -> IdentityRecord | None:
        response = self._request(
            "PATCH",
            params={"id": f"eq.{record_id}"},
            json=patch_to_row(patch),
            headers={"Prefer": "return=representation"},
        )
        records = self._to_records(self._rows(response))
        return records[0] if records else None

    def delete(self, record_id: str) -> bool:
        response = self._request(
            "DELETE",
            params={"id": f"eq.{record_id}"},
            headers={"Prefer": "return=representation"},
        )
        return len(self._rows(response)) > 0

    def list_all(self) -> list[IdentityRecord]:
        response = self._request("GET", params={"select": "*", "order": "createdAt.desc"})
        return self._to_records(self._rows(response))

    def _cleanup_client(self) -> None:
        """Close the httpx client."""
        if self._client is not None:
            self._client.close()


# Auto-register adapter
get_registry().register(StoreKind.DURABLE, SupabaseStoreAdapter)
