"""
MasterPasswordManager: create, authenticate, rotate and restore the master password.

Provides the public API of the credential layer:
- ``create(password)``: seal a new vault key under the password
- ``authenticate(password)``: verify the password and unlock the vault store
- ``rotate(new_password, current_password)``: re-wrap the vault key and
  re-key every vault's blind layer
- ``restore_from_credentials(ciphertext, nonce, hashed_password)``: unlock
  with an already derived hashed password
- ``resume_rotation()``: finish a rotation interrupted mid-way

Expected failures come back as ``Err``; self-check and storage failures
are raised.

Security Note:
    The manager persists nothing itself. Hashed passwords and the vault key
    live in local buffers that are zeroed on every exit path. Never log
    passwords, keys or sealed values.
"""
import asyncio
import logging
from typing import Any, Optional, Union

from pydantic import ValidationError

from ..exceptions import (
    AlreadyExists,
    InvalidCredentials,
    MasterPasswordNotSet,
    MissingInput,
    RateLimited,
    RateLimiterUnavailable,
    RotationVerificationFailed,
    SealVerificationFailed,
    VaultKeyUnwrapFailed,
)
from .cleanup import ScopedReleases
from .config import CredentialConfig
from .crypto import (
    SALT_SIZE,
    KEY_SIZE,
    b64decode,
    b64encode,
    derive_key,
    generate_salt,
    generate_vault_key,
    get_cipher_cls,
    hex_to_key,
    open_b64,
    seal_b64,
    secrets_equal,
    zero_bytes,
)
from .key_rotation import rekey_vaults
from .rate_limiter import RateLimiter
from .records import (
    MASTER_CREDENTIAL_RECORD,
    MASTER_VAULT_RECORD,
    PENDING_ROTATION_RECORD,
    MasterRecord,
    PendingRotation,
    RotationResult,
    SealedRecord,
)
from .result import Err, Ok, Result
from .stores import CredentialStore, VaultStore

logger = logging.getLogger("vaultlock.master")

Password = Union[bytes, bytearray, str]


def _password_buffer(password: Optional[Password]) -> bytearray:
    """Raw password bytes; text input is base64 encoded.

    Raises:
        MissingInput: If the password is absent, empty or not base64.
    """
    if isinstance(password, str):
        try:
            raw = b64decode(password)
        except ValueError:
            raise MissingInput("Password must be base64 encoded") from None
    else:
        raw = password
    if not raw:
        raise MissingInput("Password is required")
    return bytearray(raw)


def _parse_salt(text: str) -> bytes:
    salt = b64decode(text)
    if len(salt) != SALT_SIZE:
        raise ValueError(f"Salt must be {SALT_SIZE} bytes")
    return salt


def _hashed_buffer(hashed_password: Password) -> bytearray:
    if isinstance(hashed_password, str):
        return hex_to_key(hashed_password)
    if len(hashed_password) != KEY_SIZE:
        raise ValueError(f"Hashed password must be {KEY_SIZE} bytes")
    return bytearray(hashed_password)


class MasterPasswordManager:
    """Master-password lifecycle over injected stores.

    Holds no durable state of its own: the credential store keeps the
    ``masterPassword`` record, the vault store keeps ``masterEncryption``
    plus rotation markers, and the rate limiter keeps the failure counter.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        vaults: VaultStore,
        rate_limiter: RateLimiter,
        config: Optional[CredentialConfig] = None,
    ):
        self.config = config or CredentialConfig()
        self._credentials = credentials
        self._vaults = vaults
        self._limiter = rate_limiter
        self._cipher = get_cipher_cls(self.config.cipher_backend)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _derive(self, password: bytearray, salt: bytes) -> bytearray:
        """Argon2id off the event loop; intentionally slow."""
        return await asyncio.to_thread(
            derive_key,
            password,
            salt,
            self.config.kdf_opslimit,
            self.config.kdf_memlimit,
        )

    async def _hash_new(self, password: bytearray) -> tuple[bytearray, bytes]:
        salt = generate_salt()
        return await self._derive(password, salt), salt

    async def _check_lockout(self) -> Optional[Err]:
        try:
            status = await self._limiter.get_status()
        except RateLimiterUnavailable as err:
            return Err(err)
        if status.is_locked:
            logger.warning(
                "Authentication refused, locked for %d ms",
                status.lockout_remaining_ms,
            )
            return Err(RateLimited(status.lockout_remaining_ms))
        return None

    async def _deny(self) -> Err:
        """Record a failed attempt and report generic invalid credentials."""
        try:
            status = await self._limiter.record_failure()
        except RateLimiterUnavailable as err:
            return Err(err)
        logger.warning(
            "Invalid credentials, %d attempt(s) remaining",
            status.remaining_attempts,
        )
        return Err(InvalidCredentials())

    async def ensure_credentials_initialized(self) -> None:
        if not self._credentials.is_initialized:
            await self._credentials.init()

    async def get_existing_master_record(self) -> Optional[MasterRecord]:
        """Master record from the open vault store, else the credential store."""
        if self._vaults.is_initialized:
            record = await self._vaults.get(MASTER_VAULT_RECORD)
            if record:
                return MasterRecord.model_validate(record)

        await self.ensure_credentials_initialized()
        record = await self._credentials.get(MASTER_CREDENTIAL_RECORD)
        if not record:
            return None
        return MasterRecord.model_validate(record)

    async def get_rate_limit_status(self):
        await self.ensure_credentials_initialized()
        return await self._limiter.get_status()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(
        self,
        password: Password,
        store_options: Optional[dict[str, Any]] = None,
    ) -> Result[MasterRecord]:
        """Set the master password and initialize vault storage.

        Args:
            password: New master password (raw bytes or base64 text).
            store_options: Options forwarded to the vault engine.

        Returns:
            ``Ok(MasterRecord)`` with the sealed fields, or ``Err`` with
            ``MissingInput`` / ``AlreadyExists``.

        Raises:
            SealVerificationFailed: If the fresh seal does not open.
        """
        try:
            pw = _password_buffer(password)
        except MissingInput as err:
            return Err(err)

        hashed = vault_key = opened = None
        try:
            await self.ensure_credentials_initialized()
            if await self._credentials.get(MASTER_CREDENTIAL_RECORD) is not None:
                return Err(AlreadyExists())

            hashed, salt = await self._hash_new(pw)
            vault_key = generate_vault_key()
            ciphertext, nonce = seal_b64(vault_key, hashed, self._cipher)

            opened = open_b64(ciphertext, nonce, hashed, self._cipher)
            if opened is None or not secrets_equal(opened, vault_key):
                raise SealVerificationFailed()

            if not self._vaults.is_initialized:
                await self._vaults.init(bytes(opened), bytes(hashed), store_options)

            record = MasterRecord(
                ciphertext=ciphertext,
                nonce=nonce,
                salt=b64encode(salt),
                hashed_password=hashed.hex(),
                epoch=0,
            )
            await self._vaults.put(MASTER_VAULT_RECORD, record.to_record())
            await self._vaults.close()
            await self._credentials.put(
                MASTER_CREDENTIAL_RECORD, record.sealed().to_record(),
            )
            logger.info("Master password created")
            return Ok(record)
        finally:
            zero_bytes(pw)
            zero_bytes(hashed)
            zero_bytes(vault_key)
            zero_bytes(opened)

    # ------------------------------------------------------------------
    # Authenticate
    # ------------------------------------------------------------------

    async def authenticate(
        self,
        password: Password,
        store_options: Optional[dict[str, Any]] = None,
    ) -> Result[None]:
        """Verify the master password, unlocking vault storage if closed.

        A lockout is checked before any derivation. Wrong passwords and
        unreadable records both yield ``InvalidCredentials`` and count as
        a failed attempt.
        """
        try:
            pw = _password_buffer(password)
        except MissingInput as err:
            return Err(err)

        try:
            await self.ensure_credentials_initialized()
            denied = await self._check_lockout()
            if denied is not None:
                return denied
            if self._vaults.is_initialized:
                return await self._authenticate_open(pw)
            return await self._authenticate_cold(pw, store_options)
        finally:
            zero_bytes(pw)

    async def _authenticate_open(self, pw: bytearray) -> Result[None]:
        record = await self._vaults.get(MASTER_VAULT_RECORD)
        if record is None:
            return Err(MasterPasswordNotSet("Master encryption not found"))

        hashed = stored = None
        try:
            try:
                master = MasterRecord.model_validate(record)
                salt = _parse_salt(master.salt)
                stored = hex_to_key(master.hashed_password or "")
            except (ValidationError, ValueError):
                return await self._deny()

            hashed = await self._derive(pw, salt)
            if not secrets_equal(hashed, stored):
                return await self._deny()

            await self._limiter.reset()
            return Ok(None)
        finally:
            zero_bytes(hashed)
            zero_bytes(stored)

    async def _authenticate_cold(
        self,
        pw: bytearray,
        store_options: Optional[dict[str, Any]],
    ) -> Result[None]:
        record = await self._credentials.get(MASTER_CREDENTIAL_RECORD)
        if record is None:
            return Err(MasterPasswordNotSet())

        hashed = vault_key = None
        try:
            try:
                sealed = SealedRecord.model_validate(record)
                salt = _parse_salt(sealed.salt)
            except (ValidationError, ValueError):
                return await self._deny()

            hashed = await self._derive(pw, salt)
            vault_key = open_b64(sealed.ciphertext, sealed.nonce, hashed, self._cipher)
            if vault_key is None:
                return await self._deny()

            await self._vaults.init(bytes(vault_key), bytes(hashed), store_options)
            await self._limiter.reset()
            logger.info("Vault store unlocked")
        finally:
            zero_bytes(hashed)
            zero_bytes(vault_key)

        try:
            await self.resume_rotation(store_options)
        except Exception:
            # keep the store locked so the next attempt takes the cold path again
            logger.error("Pending rotation could not be resumed, locking vault store")
            await self._vaults.close()
            raise
        return Ok(None)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore_from_credentials(
        self,
        ciphertext: str,
        nonce: str,
        hashed_password: Password,
        store_options: Optional[dict[str, Any]] = None,
    ) -> Result[None]:
        """Unlock vault storage with a pre-derived hashed password.

        Args:
            ciphertext: Sealed vault key (base64).
            nonce: Seal nonce (base64).
            hashed_password: Hashed password (hex text or raw bytes).
            store_options: Options forwarded to the vault engine.
        """
        if not ciphertext or not nonce or not hashed_password:
            return Err(MissingInput("Missing required parameters"))

        await self.ensure_credentials_initialized()

        try:
            hashed = _hashed_buffer(hashed_password)
        except ValueError:
            return Err(VaultKeyUnwrapFailed())

        vault_key = None
        try:
            vault_key = open_b64(ciphertext, nonce, hashed, self._cipher)
            if vault_key is None:
                return Err(VaultKeyUnwrapFailed())
            await self._vaults.init(bytes(vault_key), bytes(hashed), store_options)
            logger.info("Vault store restored from credentials")
            return Ok(None)
        finally:
            zero_bytes(hashed)
            zero_bytes(vault_key)

    # ------------------------------------------------------------------
    # Rotate
    # ------------------------------------------------------------------

    async def rotate(
        self,
        new_password: Password,
        current_password: Password,
        store_options: Optional[dict[str, Any]] = None,
    ) -> Result[RotationResult]:
        """Change the master password, keeping the vault key unchanged.

        Nothing is written until the current password is verified and the
        new seal passes its self-check. Vault re-keying afterwards is
        sequential and resumable (see ``resume_rotation``). A pending
        rotation is always finished before a new one starts; a closed vault
        store is opened with the verified current password for that.

        Returns:
            ``Ok(RotationResult)`` with the new record and re-key stats, or
            ``Err`` with ``MissingInput`` / ``RateLimited`` /
            ``MasterPasswordNotSet`` / ``InvalidCredentials`` /
            ``VaultKeyUnwrapFailed``.

        Raises:
            RotationVerificationFailed: If the new seal does not reproduce
                the vault key.
        """
        new_pw = current_pw = None
        try:
            new_pw = _password_buffer(new_password)
            current_pw = _password_buffer(current_password)
        except MissingInput:
            zero_bytes(new_pw)
            return Err(MissingInput("New and current passwords are required"))

        derived = stored = vault_key = new_hashed = verify = None
        try:
            await self.ensure_credentials_initialized()
            denied = await self._check_lockout()
            if denied is not None:
                return denied

            if self._vaults.is_initialized:
                await self.resume_rotation(store_options)

            try:
                record = await self.get_existing_master_record()
                if record is None:
                    return Err(MasterPasswordNotSet("Master password not found"))
                salt = _parse_salt(record.salt)
                if record.hashed_password:
                    stored = hex_to_key(record.hashed_password)
            except (ValidationError, ValueError):
                return await self._deny()

            derived = await self._derive(current_pw, salt)
            if stored is not None and not secrets_equal(stored, derived):
                return await self._deny()

            vault_key = open_b64(record.ciphertext, record.nonce, derived, self._cipher)
            if vault_key is None:
                if stored is None:
                    return await self._deny()
                return Err(VaultKeyUnwrapFailed())

            # unfinished vaults must move off the previous key before it is replaced
            if not self._vaults.is_initialized:
                await self._vaults.init(bytes(vault_key), bytes(derived), store_options)
                await self.resume_rotation(store_options)

            new_hashed, new_salt = await self._hash_new(new_pw)
            ciphertext, nonce = seal_b64(vault_key, new_hashed, self._cipher)
            verify = open_b64(ciphertext, nonce, new_hashed, self._cipher)
            if verify is None or not secrets_equal(verify, vault_key):
                raise RotationVerificationFailed()

            logger.info("Rotating master password")

            active_vault_id = None
            if self._vaults.active_is_initialized:
                active = await self._vaults.active_get("vault")
                active_vault_id = active.get("id") if active else None

            # released in reverse: active vault, then the store
            async with ScopedReleases() as releases:
                if self._vaults.is_initialized:
                    releases.push("vault store", self._vaults.close)
                if self._vaults.active_is_initialized:
                    releases.push("active vault", self._vaults.close_active)

            await self._vaults.init_with_new_blind_encryption(
                bytes(vault_key), bytes(new_hashed), bytes(derived), store_options,
            )
            previous = await self._vaults.get(MASTER_VAULT_RECORD) or {}
            epoch = max(record.epoch, int(previous.get("epoch", 0))) + 1

            new_record = MasterRecord(
                ciphertext=ciphertext,
                nonce=nonce,
                salt=b64encode(new_salt),
                hashed_password=new_hashed.hex(),
                epoch=epoch,
            )
            old_ct, old_nonce = seal_b64(derived, new_hashed, self._cipher)
            pending = PendingRotation(epoch=epoch, ciphertext=old_ct, nonce=old_nonce)

            await self._vaults.put(MASTER_VAULT_RECORD, new_record.to_record())
            await self._vaults.put(PENDING_ROTATION_RECORD, pending.to_record())
            await self._credentials.put(
                MASTER_CREDENTIAL_RECORD, new_record.sealed().to_record(),
            )

            stats = await rekey_vaults(
                self._vaults,
                encryption_key=bytes(vault_key),
                new_hashed_password=bytes(new_hashed),
                current_hashed_password=bytes(derived),
                epoch=epoch,
                prefix=self.config.vault_prefix,
                active_vault_id=active_vault_id,
                options=store_options,
            )
            pending.status = "complete"
            await self._vaults.put(PENDING_ROTATION_RECORD, pending.to_record())
            await self._limiter.reset()

            logger.info("Master password rotated to epoch %d", epoch)
            return Ok(RotationResult(record=new_record, vaults=stats))
        finally:
            for buf in (new_pw, current_pw, derived, stored, vault_key, new_hashed, verify):
                zero_bytes(buf)

    async def resume_rotation(
        self,
        store_options: Optional[dict[str, Any]] = None,
    ) -> Optional[dict]:
        """Finish re-keying vaults left behind by an interrupted rotation.

        Requires the vault store to be open. Returns the re-key stats, or
        ``None`` when no rotation is pending.

        Raises:
            VaultKeyUnwrapFailed: If the pending marker or master record
                cannot be opened with the current hashed password.
        """
        if not self._vaults.is_initialized:
            return None
        pending = await self._vaults.get(PENDING_ROTATION_RECORD)
        if not pending or pending.get("status") != "pending":
            return None

        marker = PendingRotation.model_validate(pending)
        record = await self._vaults.get(MASTER_VAULT_RECORD)
        if not record:
            raise MasterPasswordNotSet("Master encryption not found")
        master = MasterRecord.model_validate(record)

        logger.info("Resuming interrupted rotation at epoch %d", marker.epoch)

        new_hashed = vault_key = previous = None
        try:
            new_hashed = hex_to_key(master.hashed_password or "")
            vault_key = open_b64(master.ciphertext, master.nonce, new_hashed, self._cipher)
            previous = open_b64(marker.ciphertext, marker.nonce, new_hashed, self._cipher)
            if vault_key is None or previous is None:
                raise VaultKeyUnwrapFailed("Cannot resume pending rotation")

            active_vault_id = None
            if self._vaults.active_is_initialized:
                active = await self._vaults.active_get("vault")
                active_vault_id = active.get("id") if active else None

            stats = await rekey_vaults(
                self._vaults,
                encryption_key=bytes(vault_key),
                new_hashed_password=bytes(new_hashed),
                current_hashed_password=bytes(previous),
                epoch=marker.epoch,
                prefix=self.config.vault_prefix,
                active_vault_id=active_vault_id,
                options=store_options,
            )
            marker.status = "complete"
            await self._vaults.put(PENDING_ROTATION_RECORD, marker.to_record())
            return stats
        finally:
            zero_bytes(new_hashed)
            zero_bytes(vault_key)
            zero_bytes(previous)
