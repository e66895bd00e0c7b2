"""
Persisted record models for the credential layer.

Field aliases follow the stored JSON shapes:
    masterPassword (top-level store): {ciphertext, nonce, salt}
    masterEncryption (vault store):   {ciphertext, nonce, salt, hashedPassword, epoch}
    rotation/pending (vault store):   {epoch, ciphertext, nonce, status}
    rateLimitData (limiter store):    {failedAttempts, lockoutUntil}
"""
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

MASTER_CREDENTIAL_RECORD = "masterPassword"
MASTER_VAULT_RECORD = "masterEncryption"
PENDING_ROTATION_RECORD = "rotation/pending"
VAULT_EPOCH_PREFIX = "rotation/vault/"
RATE_LIMIT_RECORD = "rateLimitData"


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_record(self) -> dict:
        """Plain dict in stored (aliased) form."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SealedRecord(_Record):
    """Vault key sealed under a hashed password, plus the salt to re-derive it."""

    ciphertext: str
    nonce: str
    salt: str


class MasterRecord(SealedRecord):
    """Sealed record with local verification data.

    ``hashed_password`` is hex; it is present only in the copy kept inside
    the vault store.
    """

    hashed_password: Optional[str] = Field(default=None, alias="hashedPassword")
    epoch: int = Field(default=0, ge=0)

    def sealed(self) -> SealedRecord:
        return SealedRecord(
            ciphertext=self.ciphertext, nonce=self.nonce, salt=self.salt,
        )


class PendingRotation(_Record):
    """Previous hashed password sealed under the new one while vaults re-key."""

    epoch: int = Field(ge=1)
    ciphertext: str
    nonce: str
    status: Literal["pending", "complete"] = "pending"


class RateLimitState(_Record):
    failed_attempts: int = Field(default=0, ge=0, alias="failedAttempts")
    # epoch milliseconds
    lockout_until: Optional[int] = Field(default=None, alias="lockoutUntil")

    def to_record(self) -> dict:
        # lockoutUntil is stored explicitly as null
        return self.model_dump(by_alias=True)


class RateLimitStatus(_Record):
    is_locked: bool = Field(alias="isLocked")
    remaining_attempts: int = Field(alias="remainingAttempts")
    lockout_remaining_ms: int = Field(default=0, alias="lockoutRemainingMs")


class RotationResult(_Record):
    record: MasterRecord
    vaults: dict[str, int] = Field(default_factory=dict)
