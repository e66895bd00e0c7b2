"""Shared fixtures: in-memory collaborators and a cheap KDF configuration."""
import base64

import pytest

from vaultlock.backends import MemoryCredentialStore, MemoryKeyValueStore, MemoryVaultStore
from vaultlock.master import CredentialConfig, MasterPasswordManager, RateLimiter


PASSWORD = base64.b64encode(b"pass").decode("ascii")  # "cGFzcw=="
WRONG_PASSWORD = base64.b64encode(b"wrong").decode("ascii")  # "d3Jvbmc="


class Clock:
    """Settable millisecond clock."""

    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def config():
    """Argon2 at its minimum cost so tests stay fast."""
    return CredentialConfig(kdf_opslimit=1, kdf_memlimit=8)


@pytest.fixture
def clock():
    """Clock fixed at a known instant."""
    return Clock()


@pytest.fixture
def credentials():
    """Fresh in-memory credential store."""
    return MemoryCredentialStore()


@pytest.fixture
def vaults():
    """Fresh in-memory vault store."""
    return MemoryVaultStore()


@pytest.fixture
def limiter_storage():
    """Separate store for the failure counter."""
    return MemoryKeyValueStore()


@pytest.fixture
def rate_limiter(limiter_storage, clock):
    """Rate limiter on the fixed clock."""
    return RateLimiter(limiter_storage, clock=clock)


@pytest.fixture
def manager(credentials, vaults, rate_limiter, config):
    """Manager wired to the in-memory collaborators."""
    return MasterPasswordManager(credentials, vaults, rate_limiter, config)
