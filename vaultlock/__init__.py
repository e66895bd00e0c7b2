"""VaultLock: master credential layer for local encrypted vaults."""
from .version import __version__
from .master import (
    CredentialConfig,
    MasterPasswordManager,
    RateLimiter,
    VaultContext,
)

__all__ = [
    "__version__",
    "CredentialConfig",
    "MasterPasswordManager",
    "RateLimiter",
    "VaultContext",
]
