"""Local-disk identity store for development environments."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from carcare.identity.base import BaseStoreAdapter
from carcare.identity.config import PRODUCTION_ENVIRONMENTS, StoreConfig, StoreKind
from carcare.identity.exceptions import AdapterUnavailableError, DuplicateIdentityError
from carcare.identity.records import IdentityRecord, generate_record_id
from carcare.identity.registry import get_registry

logger = logging.getLogger(__name__)

DEFAULT_USERS_FILE = Path("data") / "users.json"


class LocalFileStoreAdapter(BaseStoreAdapter):
    """Adapter persisting every identity as one JSON array on disk.

    The file is re-read on every call so edits made by another process are
    picked up. Each mutation rewrites the whole array through a temporary
    file in the same directory followed by an atomic rename.

    The store is for development only. Built for a production environment
    it is disabled and refuses every call.

    Optional connection_params:
        - path: Location of the JSON file (default: data/users.json)
        - environment: Execution context (default: CARCARE_ENV)

    Example:
        config = StoreConfig(
            store_kind=StoreKind.LOCAL_FILE,
            name="Local users file",
            connection_params={"path": "data/users.json"},
        )
        adapter = LocalFileStoreAdapter(config)
    """

    store_kind = StoreKind.LOCAL_FILE

    def __init__(self, config: StoreConfig):
        """Initialize local-file adapter."""
        super().__init__(config)
        self.path = Path(config.connection_params.get("path", DEFAULT_USERS_FILE))
        environment = config.connection_params.get("environment") or os.getenv("CARCARE_ENV", "")
        if environment.lower() in PRODUCTION_ENVIRONMENTS and config.is_enabled:
            config.is_enabled = False
            config.error_message = "local file store is not available in production"
            logger.warning(f"{config.name} disabled: {config.error_message}")
        # Serialises read-modify-write cycles within this process
        self._write_lock = threading.Lock()

    def _load(self) -> list[IdentityRecord]:
        self._ensure_enabled()
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise AdapterUnavailableError(self.store_kind, f"cannot read {self.path}: {e}") from e
        if not isinstance(raw, list):
            raise AdapterUnavailableError(
                self.store_kind, f"{self.path} does not hold a JSON array"
            )
        try:
            return [IdentityRecord.from_row(row) for row in raw]
        except (ValueError, TypeError, AttributeError) as e:
            raise AdapterUnavailableError(
                self.store_kind, f"malformed record in {self.path}: {e}"
            ) from e

    def _save(self, records: list[IdentityRecord]) -> None:
        payload = json.dumps([record.to_row() for record in records], ensure_ascii=False, indent=2)
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise AdapterUnavailableError(self.store_kind, f"cannot write {self.path}: {e}") from e

    def find_by_email(self, email: str) -> IdentityRecord | None:
        return next((r for r in self._load() if r.email == email), None)

    def find_by_id(self, record_id: str) -> IdentityRecord | None:
        return next((r for r in self._load() if r.id == record_id), None)

    def create(self, record: IdentityRecord) -> IdentityRecord:
        with self._write_lock:
            records = self._load()
            if any(r.email == record.email for r in records):
                raise DuplicateIdentityError(record.email)
            if not record.id:
                record = record.with_id(generate_record_id())
            elif any(r.id == record.id for r in records):
                raise DuplicateIdentityError(record.email)
            records.append(record)
            self._save(records)

        logger.info(f"Stored identity in local file: {record.id} {record.email}")
        return record

    def update(self, record_id: str, patch: dict[str, Any]) -> IdentityRecord | None:
        with self._write_lock:
            records = self._load()
            for index, current in enumerate(records):
                if current.id == record_id:
                    records[index] = current.apply_patch(patch)
                    self._save(records)
                    return records[index]
        return None

    def delete(self, record_id: str) -> bool:
        with self._write_lock:
            records = self._load()
            remaining = [r for r in records if r.id != record_id]
            if len(remaining) == len(records):
                return False
            self._save(remaining)
        return True

    def list_all(self) -> list[IdentityRecord]:
        return self._load()


# Auto-register adapter
get_registry().register(StoreKind.LOCAL_FILE, LocalFileStoreAdapter)
