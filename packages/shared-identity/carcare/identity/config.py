"""Configuration models for identity store adapters."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

DEFAULT_TIMEOUT_SECONDS = 5.0
PRODUCTION_ENVIRONMENTS = {"production", "prod"}
TRUTHY = {"1", "true", "yes", "on"}


class StoreKind(str, Enum):
    """Supported backing stores, declared in priority order."""

    DURABLE = "durable"  # Supabase users table
    VOLATILE = "volatile"  # Process-local memory
    LOCAL_FILE = "local_file"  # JSON file, development only

    @property
    def priority(self) -> int:
        """Lower value means higher priority."""
        return list(StoreKind).index(self)


@dataclass
class StoreConfig:
    """Configuration for a single store adapter."""

    store_kind: StoreKind
    name: str  # Human-readable name for logs and reports

    # Authentication (repr=False to prevent credential exposure in logs)
    credentials: dict[str, Any] = field(default_factory=dict, repr=False)

    # Connection settings (base URL, file path, ...)
    connection_params: dict[str, Any] = field(default_factory=dict)

    # Deadline for one call before the adapter counts as unavailable
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    # Status
    is_enabled: bool = True
    error_message: str | None = None


@dataclass
class IdentityStoreSettings:
    """Process-wide settings for the identity store.

    Attributes:
        environment: Execution context name. The local-file store is only
            composed outside production.
        supabase_url: Base URL of the durable store's project.
        supabase_key: Service or anon key for the durable store.
        data_dir: Directory holding the local-file store.
        timeout_seconds: Per-adapter deadline for one call.
        replicate_writes: Keep writing a new identity to lower-priority
            stores after the first success.
        super_admin_email: Account promoted to SUPER_ADMIN at bootstrap.
    """

    environment: str = "development"
    supabase_url: str | None = None
    supabase_key: str | None = field(default=None, repr=False)
    data_dir: Path = field(default_factory=lambda: Path("data"))
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    replicate_writes: bool = False
    super_admin_email: str | None = None

    @classmethod
    def from_env(cls) -> IdentityStoreSettings:
        """Create settings from environment variables.

        Uses CARCARE_ENV, SUPABASE_URL, SUPABASE_SERVICE_KEY (falling back
        to SUPABASE_ANON_KEY), CARCARE_DATA_DIR, CARCARE_STORE_TIMEOUT,
        CARCARE_REPLICATE_WRITES and CARCARE_SUPER_ADMIN_EMAIL.

        Raises:
            ValueError: If CARCARE_STORE_TIMEOUT is not a positive number.
        """
        raw_timeout = os.getenv("CARCARE_STORE_TIMEOUT")
        timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT_SECONDS
        if timeout <= 0:
            raise ValueError(f"CARCARE_STORE_TIMEOUT must be positive, got {raw_timeout}")

        return cls(
            environment=os.getenv("CARCARE_ENV", "development"),
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_key=os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_ANON_KEY") or None,
            data_dir=Path(os.getenv("CARCARE_DATA_DIR", "data")),
            timeout_seconds=timeout,
            replicate_writes=os.getenv("CARCARE_REPLICATE_WRITES", "").lower() in TRUTHY,
            super_admin_email=os.getenv("CARCARE_SUPER_ADMIN_EMAIL") or None,
        )

    @property
    def is_production(self) -> bool:
        """Return True when running in a production context."""
        return self.environment.lower() in PRODUCTION_ENVIRONMENTS

    @property
    def users_file(self) -> Path:
        """Path of the local-file store."""
        return self.data_dir / "users.json"

    def store_configs(self) -> list[StoreConfig]:
        """Build the priority-ordered adapter configurations.

        The durable store is always listed; without credentials it is
        disabled rather than dropped so reports show why it served nothing.
        The local-file store is left out in production.
        """
        durable = StoreConfig(
            store_kind=StoreKind.DURABLE,
            name="Supabase users",
            credentials={"api_key": self.supabase_key} if self.supabase_key else {},
            connection_params={"url": self.supabase_url} if self.supabase_url else {},
            timeout_seconds=self.timeout_seconds,
        )
        if not (self.supabase_url and self.supabase_key):
            durable.is_enabled = False
            durable.error_message = "SUPABASE_URL and SUPABASE_SERVICE_KEY/SUPABASE_ANON_KEY are required"

        configs = [
            durable,
            StoreConfig(
                store_kind=StoreKind.VOLATILE,
                name="In-memory users",
                timeout_seconds=self.timeout_seconds,
            ),
        ]
        if not self.is_production:
            configs.append(
                StoreConfig(
                    store_kind=StoreKind.LOCAL_FILE,
                    name="Local users file",
                    connection_params={
                        "path": str(self.users_file),
                        "environment": self.environment,
                    },
                    timeout_seconds=self.timeout_seconds,
                )
            )
        return configs
