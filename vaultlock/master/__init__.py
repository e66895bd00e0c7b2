"""Master Credential: Password-derived vault key wrapping and rotation.

Security Note (Threat Model):
    Hashed passwords and vault keys are held in zeroable buffers only for
    the duration of an operation. Python keeps immutable copies handed to
    the cipher and storage libraries until garbage collection; those
    cannot be zeroed. Protecting process memory is out of scope.
"""

from .config import CredentialConfig
from .context import VaultContext
from .manager import MasterPasswordManager
from .rate_limiter import RateLimiter
from .records import MasterRecord, SealedRecord, RateLimitStatus, RotationResult
from .result import Ok, Err, Result
from .stores import KeyValueStore, CredentialStore, VaultStore, VaultHandle

__all__ = [
    "CredentialConfig",
    "VaultContext",
    "MasterPasswordManager",
    "RateLimiter",
    "MasterRecord",
    "SealedRecord",
    "RateLimitStatus",
    "RotationResult",
    "Ok",
    "Err",
    "Result",
    "KeyValueStore",
    "CredentialStore",
    "VaultStore",
    "VaultHandle",
]
