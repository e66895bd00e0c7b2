"""Process-wide credential context, constructed once and passed explicitly."""
import logging
from typing import Optional

from .cleanup import ScopedReleases
from .config import CredentialConfig
from .manager import MasterPasswordManager
from .rate_limiter import RateLimiter
from .stores import CredentialStore, KeyValueStore, VaultStore

logger = logging.getLogger("vaultlock.master")


class VaultContext:
    """Owns the stores, the rate limiter and the manager for one process.

    The rate limiter persists into ``rate_limit_storage`` when given,
    otherwise into the credential store.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        vaults: VaultStore,
        rate_limit_storage: Optional[KeyValueStore] = None,
        config: Optional[CredentialConfig] = None,
    ):
        self.config = config or CredentialConfig.from_env()
        self.credentials = credentials
        self.vaults = vaults
        self.rate_limiter = RateLimiter(
            rate_limit_storage or credentials,
            max_attempts=self.config.max_attempts,
            lockout_duration_ms=self.config.lockout_duration_ms,
        )
        self.manager = MasterPasswordManager(
            credentials, vaults, self.rate_limiter, self.config,
        )

    async def close(self) -> None:
        """Close the active vault and the vault store.

        Both closes are attempted; failures are raised together as
        ``ReleaseError``.
        """
        # released in reverse: active vault, then the store
        async with ScopedReleases() as releases:
            if self.vaults.is_initialized:
                releases.push("vault store", self.vaults.close)
            if self.vaults.active_is_initialized:
                releases.push("active vault", self.vaults.close_active)
        logger.debug("Vault context closed")
