"""
VaultLock Exceptions.

Expected outcomes of credential operations (wrong password, lockout,
missing input) are returned wrapped in ``Err`` by the manager; internal
self-check failures and storage failures are raised.
"""


class MasterPasswordError(Exception):
    """Base class for all master-credential errors."""

    code: str = "master_password_error"
    message: str = "Master password operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} code={self.code!r}: {self.message}>"


class MissingInput(MasterPasswordError):
    code = "missing_input"
    message = "Required input is missing"


class AlreadyExists(MasterPasswordError):
    code = "already_exists"
    message = "Master password already exists"


class MasterPasswordNotSet(MasterPasswordError):
    code = "not_set"
    message = "Master password not set"


class InvalidCredentials(MasterPasswordError):
    """Password mismatch or unreadable record; both look the same."""
    code = "invalid_credentials"
    message = "Invalid credentials"


class VaultKeyUnwrapFailed(MasterPasswordError):
    code = "vault_key_unwrap_failed"
    message = "Error decrypting vault key"


class SealVerificationFailed(MasterPasswordError):
    code = "seal_verification_failed"
    message = "Sealed vault key failed its self-check"


class RotationVerificationFailed(MasterPasswordError):
    code = "rotation_verification_failed"
    message = "Failed to verify new password encryption"


class RateLimited(MasterPasswordError):
    code = "rate_limited"
    message = "Too many failed attempts"

    def __init__(self, lockout_remaining_ms: int = 0, message: str | None = None):
        self.lockout_remaining_ms = lockout_remaining_ms
        super().__init__(
            message or f"{self.message}, retry in {lockout_remaining_ms} ms"
        )


class StorageUnavailable(MasterPasswordError):
    code = "storage_unavailable"
    message = "Storage is unavailable"


class RateLimiterUnavailable(StorageUnavailable):
    """Rate limiter storage failed; access is denied."""
    code = "rate_limiter_unavailable"
    message = "Rate limiter unavailable - denying attempt"


class KeyDerivationError(MasterPasswordError):
    code = "key_derivation_failed"
    message = "Password hashing failed"


class ReleaseError(MasterPasswordError):
    """One or more scoped releases failed; all of them were attempted."""
    code = "release_failed"
    message = "Failed to release resources"

    def __init__(self, errors: list[tuple[str, BaseException]]):
        self.errors = errors
        names = ", ".join(name for name, _ in errors)
        super().__init__(f"{self.message}: {names}")
