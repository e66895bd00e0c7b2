"""
In-process storage engines.

``MemoryVaultStore`` models blind encryption: every vault path carries a
marker sealed under the hashed password that currently protects it.
Opening a path requires that hashed password; re-keying moves the marker
to a new one and is a no-op when the marker is already there.
"""
import copy
import logging
from typing import Any, Optional

from ..exceptions import StorageUnavailable
from ..master.crypto import open_sealed, seal, secrets_equal, zero_bytes
from ..master.stores import CredentialStore, KeyValueStore, VaultHandle, VaultStore

logger = logging.getLogger("vaultlock.backends")


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed records; values are deep-copied in and out."""

    def __init__(self, data: Optional[dict[str, dict]] = None):
        self._data: dict[str, dict] = copy.deepcopy(data) if data else {}

    async def get(self, key: str) -> Optional[dict]:
        record = self._data.get(key)
        return copy.deepcopy(record) if record is not None else None

    async def put(self, key: str, record: dict) -> None:
        self._data[key] = copy.deepcopy(record)


class MemoryCredentialStore(MemoryKeyValueStore, CredentialStore):

    def __init__(self, data: Optional[dict[str, dict]] = None):
        super().__init__(data)
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def init(self) -> None:
        self._initialized = True

    async def get(self, key: str) -> Optional[dict]:
        if not self._initialized:
            raise StorageUnavailable("Credential store not initialized")
        return await super().get(key)

    async def put(self, key: str, record: dict) -> None:
        if not self._initialized:
            raise StorageUnavailable("Credential store not initialized")
        await super().put(key, record)


class MemoryVaultHandle(VaultHandle):

    def __init__(self, path: str):
        self.path = path
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class MemoryVaultStore(VaultStore):
    """Multi-vault engine kept in memory.

    Records written through ``put`` belong to the master vault and
    survive ``close``; they are only reachable while the store is open.
    """

    MASTER_PATH = "vault"

    def __init__(self, prefix: str = "vault/"):
        self.prefix = prefix
        self._records: dict[str, dict] = {}
        self._blind: dict[str, tuple[bytes, bytes]] = {}
        self._hashed: Optional[bytearray] = None
        self._active_id: Optional[str] = None
        self.rekeyed: list[str] = []

    # ------------------------------------------------------------------
    # Blind layer
    # ------------------------------------------------------------------

    def _unlock(self, path: str, hashed_password: bytes) -> None:
        sealed = self._blind.get(path)
        if sealed is None:
            self._blind[path] = seal(path.encode("utf-8"), hashed_password)
            return
        opened = open_sealed(*sealed, hashed_password)
        if opened is None or not secrets_equal(opened, path.encode("utf-8")):
            raise StorageUnavailable(f"Blind encryption key mismatch for {path}")

    def _rekey(self, path: str, new_hashed: bytes, current_hashed: bytes) -> None:
        marker = path.encode("utf-8")
        sealed = self._blind.get(path)
        if sealed is not None:
            opened = open_sealed(*sealed, current_hashed)
            if opened is None:
                if open_sealed(*sealed, new_hashed) is not None:
                    logger.debug("Blind layer of %s already re-keyed", path)
                    return
                raise StorageUnavailable(
                    f"Blind encryption key mismatch for {path}"
                )
            if not secrets_equal(opened, marker):
                raise StorageUnavailable(f"Corrupted blind marker for {path}")
        self._blind[path] = seal(marker, new_hashed)
        self.rekeyed.append(path)

    def verify_blind_key(self, path: str, hashed_password: bytes) -> bool:
        """True if ``path`` opens under ``hashed_password``."""
        sealed = self._blind.get(path)
        if sealed is None:
            return False
        return open_sealed(*sealed, hashed_password) is not None

    def _require_open(self) -> None:
        if self._hashed is None:
            raise StorageUnavailable("Vault store not initialized")

    def _opened(self, hashed_password: bytes) -> None:
        zero_bytes(self._hashed)
        self._hashed = bytearray(hashed_password)

    # ------------------------------------------------------------------
    # Master vault
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._hashed is not None

    async def init(
        self,
        encryption_key: bytes,
        hashed_password: bytes,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        self._unlock(self.MASTER_PATH, hashed_password)
        self._opened(hashed_password)
        logger.debug("Master vault opened")

    async def init_with_new_blind_encryption(
        self,
        encryption_key: bytes,
        new_hashed_password: bytes,
        current_hashed_password: bytes,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        self._rekey(self.MASTER_PATH, new_hashed_password, current_hashed_password)
        self._opened(new_hashed_password)
        logger.debug("Master vault opened with new blind encryption")

    async def close(self) -> None:
        zero_bytes(self._hashed)
        self._hashed = None

    async def get(self, key: str) -> Optional[dict]:
        self._require_open()
        record = self._records.get(key)
        return copy.deepcopy(record) if record is not None else None

    async def put(self, key: str, record: dict) -> None:
        self._require_open()
        self._records[key] = copy.deepcopy(record)

    async def list(self, prefix: str) -> list[dict]:
        self._require_open()
        return [
            copy.deepcopy(record)
            for name, record in sorted(self._records.items())
            if name.startswith(prefix)
        ]

    async def create_vault(self, vault_id: str, name: Optional[str] = None) -> dict:
        """Register a vault and seal its blind layer under the current key."""
        self._require_open()
        record = {"id": vault_id, "name": name or vault_id}
        self._records[f"{self.prefix}{vault_id}"] = record
        self._unlock(f"{self.prefix}{vault_id}", bytes(self._hashed))
        return copy.deepcopy(record)

    # ------------------------------------------------------------------
    # Individual vaults
    # ------------------------------------------------------------------

    async def open_with_new_blind_encryption(
        self,
        path: str,
        encryption_key: bytes,
        new_hashed_password: bytes,
        current_hashed_password: bytes,
        options: Optional[dict[str, Any]] = None,
    ) -> VaultHandle:
        self._rekey(path, new_hashed_password, current_hashed_password)
        return MemoryVaultHandle(path)

    @property
    def active_is_initialized(self) -> bool:
        return self._active_id is not None

    async def active_get(self, name: str) -> Optional[dict]:
        if self._active_id is None or name != "vault":
            return None
        return {"id": self._active_id}

    async def init_active(
        self,
        vault_id: str,
        encryption_key: bytes,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        self._require_open()
        if self._active_id is not None:
            await self.close_active()
        self._unlock(f"{self.prefix}{vault_id}", bytes(self._hashed))
        self._active_id = vault_id
        logger.debug("Active vault %s opened", vault_id)

    async def close_active(self) -> None:
        self._active_id = None
