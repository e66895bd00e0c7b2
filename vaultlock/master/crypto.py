"""
Master Credential Crypto: Password hashing and vault key wrapping.

Implements the two primitives of the credential layer:
- KeyDerivation: Argon2id(password, salt) → 32-byte hashed password
- KeyWrap: AEAD(vault_key, hashed_password, random nonce) → sealed vault key

Sealed values cross the manager boundary as base64 text; hashed passwords
as hex text. Raw secrets are handled as ``bytearray`` so they can be zeroed.

Security Note:
    Never log plaintext, ciphertext, salts or hashed passwords.
    Nonces are random 96-bit and generated on every seal.
"""
import os
import hmac
import base64
import binascii
import logging
import secrets
from contextlib import contextmanager
from collections.abc import Iterator
from typing import Optional, Union

from argon2.low_level import hash_secret_raw, Type
from argon2.exceptions import HashingError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..exceptions import KeyDerivationError

logger = logging.getLogger("vaultlock.master")

SALT_SIZE = 16  # bytes
KEY_SIZE = 32  # hashed password and vault key length
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # Poly1305 / GCM tag

# libsodium pwhash tiers: "sensitive" passes, "interactive" memory (KiB)
OPSLIMIT_SENSITIVE = 4
MEMLIMIT_INTERACTIVE = 64 * 1024
KDF_PARALLELISM = 1

CIPHER_BACKENDS = {
    "chacha20": ChaCha20Poly1305,
    "aesgcm": AESGCM,
}

Secret = Union[bytes, bytearray, memoryview]


def get_cipher_cls(backend: Optional[str] = None) -> type:
    """Return the AEAD cipher class for a backend name.

    Falls back to VAULT_CIPHER_BACKEND, then to ChaCha20-Poly1305.
    """
    name = (backend or os.environ.get("VAULT_CIPHER_BACKEND", "chacha20")).lower()
    try:
        return CIPHER_BACKENDS[name]
    except KeyError:
        raise ValueError(f"Unsupported cipher backend: {name}") from None


# Resolve the default once at module load so seal/open cannot disagree
# if the env var changes mid-process.
CIPHER_CLS = get_cipher_cls()


# ---------------------------------------------------------------------------
# Secret buffers
# ---------------------------------------------------------------------------

def zero_bytes(buf: Optional[bytearray]) -> None:
    """Overwrite a bytearray with zeros (best-effort memory clearing)."""
    if buf is None:
        return
    for i in range(len(buf)):
        buf[i] = 0


@contextmanager
def secret_buffer(data: Secret = b"") -> Iterator[bytearray]:
    """Yield a mutable copy of ``data`` that is zeroed on every exit path."""
    buf = bytearray(data)
    try:
        yield buf
    finally:
        zero_bytes(buf)


def secrets_equal(a: Secret, b: Secret) -> bool:
    """Constant-time comparison of two secrets."""
    return hmac.compare_digest(bytes(a), bytes(b))


# ---------------------------------------------------------------------------
# Text encodings
# ---------------------------------------------------------------------------

def b64encode(data: Secret) -> str:
    return base64.b64encode(bytes(data)).decode("ascii")


def b64decode(text: str) -> bytes:
    """Strict base64 decoding.

    Raises:
        ValueError: If ``text`` is not valid base64.
    """
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, TypeError) as err:
        raise ValueError("Invalid base64 value") from err


def hex_to_key(text: str) -> bytearray:
    """Decode a hex-encoded hashed password into a zeroable buffer.

    Raises:
        ValueError: If ``text`` is not hex or has the wrong length.
    """
    key = bytearray.fromhex(text)
    if len(key) != KEY_SIZE:
        zero_bytes(key)
        raise ValueError(f"Hashed password must be {KEY_SIZE} bytes")
    return key


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def generate_salt() -> bytes:
    """Fresh random salt for a password-set or rotation event."""
    return secrets.token_bytes(SALT_SIZE)


def derive_key(
    password: Secret,
    salt: bytes,
    opslimit: int = OPSLIMIT_SENSITIVE,
    memlimit: int = MEMLIMIT_INTERACTIVE,
) -> bytearray:
    """Derive the 32-byte hashed password with Argon2id.

    Deterministic for a given (password, salt, opslimit, memlimit).

    Args:
        password: Raw password bytes.
        salt: ``SALT_SIZE`` random bytes stored with the sealed record.
        opslimit: Argon2 passes.
        memlimit: Argon2 memory cost in KiB.

    Returns:
        Hashed password in a zeroable buffer; the caller must zero it.

    Raises:
        KeyDerivationError: If the salt is malformed or Argon2 reports an error.
    """
    if len(salt) != SALT_SIZE:
        raise KeyDerivationError(
            f"Salt must be {SALT_SIZE} bytes, got {len(salt)}"
        )
    try:
        raw = hash_secret_raw(
            secret=bytes(password),
            salt=bytes(salt),
            time_cost=opslimit,
            memory_cost=memlimit,
            parallelism=KDF_PARALLELISM,
            hash_len=KEY_SIZE,
            type=Type.ID,
        )
    except HashingError as err:
        raise KeyDerivationError(f"Password hashing failed: {err}") from err
    return bytearray(raw)


def hash_password(
    password: Secret,
    opslimit: int = OPSLIMIT_SENSITIVE,
    memlimit: int = MEMLIMIT_INTERACTIVE,
) -> tuple[bytearray, bytes]:
    """Hash a new password under a fresh salt.

    Returns:
        Tuple of (hashed_password, salt).
    """
    salt = generate_salt()
    return derive_key(password, salt, opslimit, memlimit), salt


# ---------------------------------------------------------------------------
# Key wrapping
# ---------------------------------------------------------------------------

def generate_vault_key() -> bytearray:
    """Random vault encryption key; generated once per vault store."""
    return bytearray(secrets.token_bytes(KEY_SIZE))


def seal(
    secret: Secret,
    key: Secret,
    cipher_cls: Optional[type] = None,
) -> tuple[bytes, bytes]:
    """Encrypt ``secret`` under ``key`` with a fresh random nonce.

    Format: ciphertext = encrypted_payload + 16-byte tag.

    Args:
        secret: Short secret to wrap (vault key, hashed password).
        key: 32-byte wrapping key.
        cipher_cls: AEAD class; defaults to ``CIPHER_CLS``.

    Returns:
        Tuple of (ciphertext, nonce).
    """
    cipher = (cipher_cls or CIPHER_CLS)(bytes(key))
    nonce = os.urandom(NONCE_SIZE)
    ct = cipher.encrypt(nonce, bytes(secret), None)
    return ct, nonce


def open_sealed(
    ciphertext: bytes,
    nonce: bytes,
    key: Secret,
    cipher_cls: Optional[type] = None,
) -> Optional[bytearray]:
    """Verify and decrypt a sealed secret.

    Returns:
        The secret in a zeroable buffer, or ``None`` if the tag does not
        verify or the sealed value is malformed.
    """
    if len(nonce) != NONCE_SIZE or len(ciphertext) < TAG_SIZE:
        return None
    cipher = (cipher_cls or CIPHER_CLS)(bytes(key))
    try:
        plaintext = cipher.decrypt(nonce, ciphertext, None)
    except InvalidTag:
        return None
    return bytearray(plaintext)


def seal_b64(
    secret: Secret,
    key: Secret,
    cipher_cls: Optional[type] = None,
) -> tuple[str, str]:
    """``seal`` with base64 text output: (ciphertext, nonce)."""
    ct, nonce = seal(secret, key, cipher_cls)
    return b64encode(ct), b64encode(nonce)


def open_b64(
    ciphertext: str,
    nonce: str,
    key: Secret,
    cipher_cls: Optional[type] = None,
) -> Optional[bytearray]:
    """``open_sealed`` for base64 text input.

    Undecodable input fails the same way a bad tag does.
    """
    try:
        ct = b64decode(ciphertext)
        nc = b64decode(nonce)
    except ValueError:
        return None
    return open_sealed(ct, nc, key, cipher_cls)
