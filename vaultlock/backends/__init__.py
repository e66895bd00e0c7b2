"""Reference storage engines for the credential layer."""

from .memory import (
    MemoryKeyValueStore,
    MemoryCredentialStore,
    MemoryVaultStore,
    MemoryVaultHandle,
)
from .file import JsonFileStore

__all__ = [
    "MemoryKeyValueStore",
    "MemoryCredentialStore",
    "MemoryVaultStore",
    "MemoryVaultHandle",
    "JsonFileStore",
]
