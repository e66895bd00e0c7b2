"""
Vault Blind Re-keying: Move every vault's blind layer to a new hashed password.

Vaults are re-keyed one at a time (open → re-key → close) so only one
vault handle is open during the loop. Progress is recorded per vault as
``rotation/vault/<id> = {epoch}`` in the master vault store; vaults already
at the target epoch are skipped, which makes an interrupted rotation
resumable.

Security Note:
    Hashed passwords and the vault key exist in memory only for the
    duration of the loop. Never log key material.
"""
import logging
from typing import Any, Optional

from .records import VAULT_EPOCH_PREFIX
from .stores import VaultStore

logger = logging.getLogger("vaultlock.master")


async def rekey_vaults(
    vaults: VaultStore,
    encryption_key: bytes,
    new_hashed_password: bytes,
    current_hashed_password: bytes,
    epoch: int,
    prefix: str = "vault/",
    active_vault_id: Optional[str] = None,
    options: Optional[dict[str, Any]] = None,
) -> dict:
    """Re-key the blind layer of every vault registered under ``prefix``.

    Args:
        vaults: Open master vault store.
        encryption_key: Master vault key passed to each vault instance.
        new_hashed_password: Target blind key.
        current_hashed_password: Blind key vaults are currently under.
        epoch: Rotation epoch being applied.
        prefix: Namespace of vault registry records.
        active_vault_id: Vault to reopen once the loop completes.
        options: Storage options forwarded to the engine.

    Returns:
        Stats dict with keys: total, rotated, skipped, invalid.
    """
    if vaults.active_is_initialized:
        await vaults.close_active()

    stats = {"total": 0, "rotated": 0, "skipped": 0, "invalid": 0}
    entries = await vaults.list(prefix)

    logger.info(
        "Re-keying %d vault(s) to epoch %d", len(entries), epoch,
    )

    for entry in entries:
        vault_id = entry.get("id") if isinstance(entry, dict) else None
        if not vault_id:
            stats["invalid"] += 1
            continue
        stats["total"] += 1

        marker_key = f"{VAULT_EPOCH_PREFIX}{vault_id}"
        marker = await vaults.get(marker_key)
        if marker and marker.get("epoch", 0) >= epoch:
            stats["skipped"] += 1
            continue

        handle = await vaults.open_with_new_blind_encryption(
            path=f"{prefix}{vault_id}",
            encryption_key=encryption_key,
            new_hashed_password=new_hashed_password,
            current_hashed_password=current_hashed_password,
            options=options,
        )
        await handle.close()
        await vaults.put(marker_key, {"epoch": epoch})
        stats["rotated"] += 1
        logger.debug("Vault %s re-keyed to epoch %d", vault_id, epoch)

    if active_vault_id:
        await vaults.init_active(active_vault_id, encryption_key, options)

    logger.info("Vault re-key complete: %s", stats)
    return stats
