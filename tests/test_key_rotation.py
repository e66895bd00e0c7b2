"""
Tests for sequential vault re-keying and recovery from interrupted rotations.
"""
import base64

import pytest

from vaultlock.backends import MemoryVaultStore
from vaultlock.exceptions import StorageUnavailable
from vaultlock.master import MasterPasswordManager
from vaultlock.master.crypto import generate_vault_key, hex_to_key
from vaultlock.master.key_rotation import rekey_vaults
from vaultlock.master.records import MASTER_VAULT_RECORD, PENDING_ROTATION_RECORD

OLD_PASSWORD = base64.b64encode(b"old").decode("ascii")
NEW_PASSWORD = base64.b64encode(b"new").decode("ascii")
THIRD_PASSWORD = base64.b64encode(b"third").decode("ascii")
VAULT_IDS = ("alpha", "beta", "gamma")


class CrashingVaultStore(MemoryVaultStore):
    """Vault store that fails when re-keying selected paths."""

    def __init__(self):
        super().__init__()
        self.fail_on: set[str] = set()
        self.opened: list[str] = []
        self.closes: list[str] = []

    async def open_with_new_blind_encryption(self, path, *args, **kwargs):
        if path in self.fail_on:
            raise StorageUnavailable(f"crash while re-keying {path}")
        self.opened.append(path)
        return await super().open_with_new_blind_encryption(path, *args, **kwargs)

    async def close(self):
        self.closes.append("vault store")
        await super().close()

    async def close_active(self):
        self.closes.append("active vault")
        await super().close_active()


@pytest.fixture
def vaults():
    """Crash-injecting vault store shared with the manager fixture."""
    return CrashingVaultStore()


async def _setup(manager, vaults):
    await manager.create(OLD_PASSWORD)
    await manager.authenticate(OLD_PASSWORD)
    for vault_id in VAULT_IDS:
        await vaults.create_vault(vault_id)
    record = await vaults.get(MASTER_VAULT_RECORD)
    return hex_to_key(record["hashedPassword"])


async def _crash_rotation(manager, vaults, path):
    vaults.fail_on = {path}
    with pytest.raises(StorageUnavailable):
        await manager.rotate(NEW_PASSWORD, OLD_PASSWORD)


# --- Re-key loop ---

class TestRekeyVaults:
    """Tests for the per-vault blind re-key loop."""

    @pytest.mark.asyncio
    async def test_rekeys_sequentially_and_records_epoch(self, vaults):
        """Every vault is re-keyed in order and stamped with the epoch."""
        old, new = generate_vault_key(), generate_vault_key()
        await vaults.init(b"key", bytes(old))
        for vault_id in VAULT_IDS:
            await vaults.create_vault(vault_id)

        stats = await rekey_vaults(vaults, b"key", bytes(new), bytes(old), epoch=1)
        assert stats == {"total": 3, "rotated": 3, "skipped": 0, "invalid": 0}
        assert vaults.opened == [f"vault/{v}" for v in VAULT_IDS]
        for vault_id in VAULT_IDS:
            assert await vaults.get(f"rotation/vault/{vault_id}") == {"epoch": 1}

    @pytest.mark.asyncio
    async def test_vaults_at_epoch_are_skipped(self, vaults):
        """Vaults already at the target epoch are not opened again."""
        old, new = generate_vault_key(), generate_vault_key()
        await vaults.init(b"key", bytes(old))
        for vault_id in VAULT_IDS:
            await vaults.create_vault(vault_id)
        await rekey_vaults(vaults, b"key", bytes(new), bytes(old), epoch=1)

        vaults.opened.clear()
        stats = await rekey_vaults(vaults, b"key", bytes(new), bytes(old), epoch=1)
        assert stats["skipped"] == 3
        assert vaults.opened == []

    @pytest.mark.asyncio
    async def test_closes_and_reopens_active_vault(self, vaults):
        """The active vault is closed for the loop and reopened afterwards."""
        old, new = generate_vault_key(), generate_vault_key()
        await vaults.init(b"key", bytes(old))
        await vaults.create_vault("alpha")
        await vaults.init_active("alpha", b"key")
        await vaults.init_with_new_blind_encryption(b"key", bytes(new), bytes(old))

        await rekey_vaults(
            vaults, b"key", bytes(new), bytes(old), epoch=1, active_vault_id="alpha",
        )
        assert await vaults.active_get("vault") == {"id": "alpha"}

    @pytest.mark.asyncio
    async def test_failure_stops_the_loop(self, vaults):
        """A failing vault aborts the loop before later vaults are touched."""
        old, new = generate_vault_key(), generate_vault_key()
        await vaults.init(b"key", bytes(old))
        for vault_id in VAULT_IDS:
            await vaults.create_vault(vault_id)
        vaults.fail_on = {"vault/beta"}

        with pytest.raises(StorageUnavailable):
            await rekey_vaults(vaults, b"key", bytes(new), bytes(old), epoch=1)
        assert vaults.opened == ["vault/alpha"]
        assert await vaults.get("rotation/vault/gamma") is None


# --- Interrupted rotation ---

class TestResumeRotation:
    """Tests for finishing rotations interrupted mid-loop."""

    @pytest.mark.asyncio
    async def test_crash_then_authenticate_resumes(self, manager, vaults):
        """A cold authenticate finishes the vaults a crash left behind."""
        old_hashed = await _setup(manager, vaults)
        await _crash_rotation(manager, vaults, "vault/beta")

        pending = await vaults.get(PENDING_ROTATION_RECORD)
        assert pending["status"] == "pending"
        assert vaults.verify_blind_key("vault/gamma", old_hashed)

        vaults.fail_on = set()
        await vaults.close()
        vaults.opened.clear()
        assert (await manager.authenticate(NEW_PASSWORD)).ok

        new_hashed = hex_to_key((await vaults.get(MASTER_VAULT_RECORD))["hashedPassword"])
        assert vaults.opened == ["vault/beta", "vault/gamma"]
        for vault_id in VAULT_IDS:
            assert vaults.verify_blind_key(f"vault/{vault_id}", new_hashed)
            assert not vaults.verify_blind_key(f"vault/{vault_id}", old_hashed)
        assert (await vaults.get(PENDING_ROTATION_RECORD))["status"] == "complete"

    @pytest.mark.asyncio
    async def test_failed_resume_keeps_store_locked(self, manager, vaults):
        """A cold authenticate whose resume fails leaves the store closed."""
        await _setup(manager, vaults)
        await _crash_rotation(manager, vaults, "vault/beta")
        await vaults.close()

        # same password, same outcome, until the vault can be re-keyed
        for _ in range(2):
            with pytest.raises(StorageUnavailable):
                await manager.authenticate(NEW_PASSWORD)
            assert vaults.is_initialized is False

        vaults.fail_on = set()
        assert (await manager.authenticate(NEW_PASSWORD)).ok
        assert (await vaults.get(PENDING_ROTATION_RECORD))["status"] == "complete"

    @pytest.mark.asyncio
    async def test_explicit_resume(self, manager, vaults):
        """resume_rotation re-keys only the unfinished vaults."""
        await _setup(manager, vaults)
        await _crash_rotation(manager, vaults, "vault/gamma")

        vaults.fail_on = set()
        stats = await manager.resume_rotation()
        assert stats == {"total": 3, "rotated": 1, "skipped": 2, "invalid": 0}
        assert await manager.resume_rotation() is None

    @pytest.mark.asyncio
    async def test_resume_requires_open_store(self, manager, vaults):
        """Nothing is resumed while the vault store is closed."""
        await _setup(manager, vaults)
        await vaults.close()
        assert await manager.resume_rotation() is None

    @pytest.mark.asyncio
    async def test_rotate_finishes_pending_first(self, manager, vaults):
        """A new rotation on an open store completes the pending one first."""
        await _setup(manager, vaults)
        await _crash_rotation(manager, vaults, "vault/gamma")
        vaults.fail_on = set()

        result = await manager.rotate(THIRD_PASSWORD, NEW_PASSWORD)
        assert result.ok
        assert result.value.record.epoch == 2
        final = hex_to_key(result.value.record.hashed_password)
        for vault_id in VAULT_IDS:
            assert vaults.verify_blind_key(f"vault/{vault_id}", final)

    @pytest.mark.asyncio
    async def test_rotate_after_restart_finishes_pending_first(self, manager, vaults):
        """A new rotation on a closed store still completes the pending one."""
        old_hashed = await _setup(manager, vaults)
        await _crash_rotation(manager, vaults, "vault/gamma")
        vaults.fail_on = set()
        await vaults.close()

        result = await manager.rotate(THIRD_PASSWORD, NEW_PASSWORD)
        assert result.ok
        assert result.value.record.epoch == 2
        final = hex_to_key(result.value.record.hashed_password)
        for vault_id in VAULT_IDS:
            assert vaults.verify_blind_key(f"vault/{vault_id}", final)
            assert not vaults.verify_blind_key(f"vault/{vault_id}", old_hashed)
        assert (await vaults.get(PENDING_ROTATION_RECORD))["status"] == "complete"

        await vaults.close()
        assert (await manager.authenticate(THIRD_PASSWORD)).ok


# --- Release order ---

class TestReleaseOrder:
    """Tests for the order vault handles are released in."""

    @pytest.mark.asyncio
    async def test_rotate_closes_active_vault_before_store(self, manager, vaults):
        """Rotation closes the active vault first, then the vault store."""
        await _setup(manager, vaults)
        await vaults.init_active("alpha", b"key")
        vaults.closes.clear()

        assert (await manager.rotate(NEW_PASSWORD, OLD_PASSWORD)).ok
        assert vaults.closes == ["active vault", "vault store"]


class TestStandaloneManager:
    """Tests for a manager built without explicit configuration."""

    @pytest.mark.asyncio
    async def test_default_config_from_model(self, credentials, vaults, rate_limiter):
        """Model defaults apply when no config is passed."""
        manager = MasterPasswordManager(credentials, vaults, rate_limiter)
        assert manager.config.kdf_opslimit == 4
        assert manager.config.cipher_backend == "chacha20"
