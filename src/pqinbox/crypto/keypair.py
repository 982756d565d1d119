"""ML-KEM-768 inbox keys and HKDF key derivation for pqinbox."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from pqcrypto.kem.ml_kem_768 import generate_keypair as mlkem_generate_keypair

from .constants import (
    AES_KEY_SIZE,
    HKDF_CONTEXT,
    MLKEM768_CPA_PRIVATE_KEY_SIZE,
    MLKEM768_PUBLIC_KEY_SIZE,
    MLKEM768_SECRET_KEY_SIZE,
)
from .utils import to_base64url


@dataclass(frozen=True)
class Keypair:
    """ML-KEM-768 keypair owned by one inbox.

    Attributes:
        public_key: The public key bytes (1184 bytes).
        secret_key: The secret key bytes (2400 bytes). Excluded from repr.
        public_key_b64: Base64url-encoded public key.
    """

    public_key: bytes
    secret_key: bytes = field(repr=False)
    public_key_b64: str

    @classmethod
    def from_secret_key(cls, secret_key: bytes) -> Keypair:
        """Rebuild a keypair from its secret key alone.

        Raises:
            ValueError: If the secret key has invalid length.
        """
        public_key = derive_public_key_from_secret(secret_key)
        return cls(
            public_key=public_key,
            secret_key=secret_key,
            public_key_b64=to_base64url(public_key),
        )

    @property
    def inbox_hash(self) -> str:
        """The inbox identifier derived from this keypair's public key."""
        return compute_inbox_hash(self.public_key)


def generate_keypair() -> Keypair:
    """Generate a new ML-KEM-768 keypair."""
    public_key, secret_key = mlkem_generate_keypair()
    return Keypair(
        public_key=bytes(public_key),
        secret_key=bytes(secret_key),
        public_key_b64=to_base64url(public_key),
    )


def validate_keypair(keypair: Keypair) -> bool:
    """Check that a keypair has ML-KEM-768 sizes and a consistent public key."""
    if len(keypair.public_key) != MLKEM768_PUBLIC_KEY_SIZE:
        return False
    if len(keypair.secret_key) != MLKEM768_SECRET_KEY_SIZE:
        return False
    return derive_public_key_from_secret(keypair.secret_key) == keypair.public_key


def compute_inbox_hash(public_key: bytes) -> str:
    """Derive the inbox hash: base64url(SHA-256(public_key))."""
    return to_base64url(hashlib.sha256(public_key).digest())


def derive_public_key_from_secret(secret_key: bytes) -> bytes:
    """Slice the public key out of an ML-KEM-768 secret key.

    The secret key is laid out as ``cpa_sk (1152) || pk (1184) || H(pk) (32) || z (32)``.

    Raises:
        ValueError: If the secret key is not 2400 bytes.
    """
    if len(secret_key) != MLKEM768_SECRET_KEY_SIZE:
        raise ValueError(
            f"Invalid secret key length: {len(secret_key)}, expected {MLKEM768_SECRET_KEY_SIZE}"
        )
    start = MLKEM768_CPA_PRIVATE_KEY_SIZE
    return secret_key[start : start + MLKEM768_PUBLIC_KEY_SIZE]


def derive_key(shared_secret: bytes, ct_kem: bytes, aad: bytes) -> bytes:
    """Derive an AES-256 key using HKDF-SHA-512.

    salt = SHA-256(ct_kem); info = context || len(aad) (4 bytes, big-endian) || aad.
    """
    salt = hashlib.sha256(ct_kem).digest()
    info = HKDF_CONTEXT.encode("utf-8") + len(aad).to_bytes(4, "big") + aad
    return HKDF(hashes.SHA512(), AES_KEY_SIZE, salt, info).derive(shared_secret)
