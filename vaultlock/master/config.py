"""
Credential Configuration: KDF tuning, cipher selection and lockout policy.

Reads overrides from environment variables:
    VAULT_CIPHER_BACKEND = chacha20 | aesgcm
    VAULT_KDF_OPSLIMIT = <argon2 passes>
    VAULT_KDF_MEMLIMIT = <argon2 memory, KiB>
    VAULT_MAX_ATTEMPTS = <failed attempts before lockout>
    VAULT_LOCKOUT_MS = <lockout duration in milliseconds>
    VAULT_PREFIX = <namespace prefix of per-vault records>

Security Note:
    Never log key material. Only log parameters and counters.
"""
import os
import logging

from pydantic import BaseModel, Field, field_validator

from .crypto import (
    CIPHER_BACKENDS,
    OPSLIMIT_SENSITIVE,
    MEMLIMIT_INTERACTIVE,
)

logger = logging.getLogger("vaultlock.master")

MAX_ATTEMPTS = 5
LOCKOUT_DURATION_MS = 5 * 60 * 1000
VAULT_PREFIX = "vault/"


class CredentialConfig(BaseModel):
    """Validated credential-layer configuration."""

    cipher_backend: str = Field(default="chacha20")
    kdf_opslimit: int = Field(default=OPSLIMIT_SENSITIVE, ge=1)
    kdf_memlimit: int = Field(default=MEMLIMIT_INTERACTIVE, ge=8)
    max_attempts: int = Field(default=MAX_ATTEMPTS, ge=1)
    lockout_duration_ms: int = Field(default=LOCKOUT_DURATION_MS, ge=0)
    vault_prefix: str = Field(default=VAULT_PREFIX, min_length=1)

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in CIPHER_BACKENDS:
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @classmethod
    def from_env(cls) -> "CredentialConfig":
        """Create CredentialConfig from environment, falling back to defaults.

        Returns:
            Populated CredentialConfig instance.
        """
        overrides = {}
        env_map = {
            "VAULT_CIPHER_BACKEND": "cipher_backend",
            "VAULT_KDF_OPSLIMIT": "kdf_opslimit",
            "VAULT_KDF_MEMLIMIT": "kdf_memlimit",
            "VAULT_MAX_ATTEMPTS": "max_attempts",
            "VAULT_LOCKOUT_MS": "lockout_duration_ms",
            "VAULT_PREFIX": "vault_prefix",
        }
        for name, field in env_map.items():
            value = os.environ.get(name)
            if value is not None:
                overrides[field] = value
        config = cls(**overrides)
        logger.debug(
            "Credential config: cipher=%s opslimit=%d memlimit=%d max_attempts=%d",
            config.cipher_backend, config.kdf_opslimit,
            config.kdf_memlimit, config.max_attempts,
        )
        return config
