"""
Collaborator interfaces consumed by the credential layer.

Concrete storage engines implement these; the manager and the rate
limiter only ever see the abstract types. Every method may fail, and
failures propagate to the caller.
"""
from abc import ABC, abstractmethod
from typing import Any, Optional


class KeyValueStore(ABC):
    """Named-record storage: ``get`` returns ``None`` for a missing key."""

    @abstractmethod
    async def get(self, key: str) -> Optional[dict]:
        ...

    @abstractmethod
    async def put(self, key: str, record: dict) -> None:
        ...


class CredentialStore(KeyValueStore):
    """Top-level store holding the master credential record."""

    @property
    @abstractmethod
    def is_initialized(self) -> bool:
        ...

    @abstractmethod
    async def init(self) -> None:
        ...


class VaultHandle(ABC):
    """An individually opened vault."""

    @abstractmethod
    async def close(self) -> None:
        ...


class VaultStore(KeyValueStore):
    """Encrypted multi-vault storage engine.

    The master vault store holds the master record, the vault registry
    (records under the vault prefix) and rotation markers. Every vault,
    master included, is also protected by a blind-encryption layer keyed
    by the hashed password.
    """

    @property
    @abstractmethod
    def is_initialized(self) -> bool:
        ...

    @abstractmethod
    async def init(
        self,
        encryption_key: bytes,
        hashed_password: bytes,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        """Open the master vault store."""

    @abstractmethod
    async def init_with_new_blind_encryption(
        self,
        encryption_key: bytes,
        new_hashed_password: bytes,
        current_hashed_password: bytes,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        """Open the master vault store, re-keying its blind layer."""

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def list(self, prefix: str) -> list[dict]:
        """Records whose name starts with ``prefix``."""

    @abstractmethod
    async def open_with_new_blind_encryption(
        self,
        path: str,
        encryption_key: bytes,
        new_hashed_password: bytes,
        current_hashed_password: bytes,
        options: Optional[dict[str, Any]] = None,
    ) -> VaultHandle:
        """Open the vault at ``path``, re-keying its blind layer."""

    # Active vault: at most one open at a time.

    @property
    @abstractmethod
    def active_is_initialized(self) -> bool:
        ...

    @abstractmethod
    async def active_get(self, name: str) -> Optional[dict]:
        ...

    @abstractmethod
    async def init_active(
        self,
        vault_id: str,
        encryption_key: bytes,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        ...

    @abstractmethod
    async def close_active(self) -> None:
        ...
