"""ML-DSA-65 signature verification for pqinbox."""

from __future__ import annotations

from pqcrypto.sign.ml_dsa_65 import verify as mldsa_verify

from ..errors import SignatureVerificationError
from ..types import EncryptedPayload
from .constants import HKDF_CONTEXT, MLDSA65_PUBLIC_KEY_SIZE
from .utils import from_base64url


def build_transcript(encrypted_data: EncryptedPayload) -> bytes:
    """Build the signed transcript of an encrypted payload.

    The transcript must be constructed byte-for-byte identical to the server:
    version || "kem:sig:aead:kdf" || context || ct_kem || nonce || aad
        || ciphertext || server_sig_pk
    """
    algs = encrypted_data["algs"]
    ciphersuite = f"{algs['kem']}:{algs['sig']}:{algs['aead']}:{algs['kdf']}"
    return b"".join(
        [
            bytes([encrypted_data["v"]]),
            ciphersuite.encode("utf-8"),
            HKDF_CONTEXT.encode("utf-8"),
            from_base64url(encrypted_data["ct_kem"]),
            from_base64url(encrypted_data["nonce"]),
            from_base64url(encrypted_data["aad"]),
            from_base64url(encrypted_data["ciphertext"]),
            from_base64url(encrypted_data["server_sig_pk"]),
        ]
    )


def validate_server_public_key(server_sig_pk: bytes) -> bool:
    """Check the length of an ML-DSA-65 public key."""
    return len(server_sig_pk) == MLDSA65_PUBLIC_KEY_SIZE


def verify_signature(encrypted_data: EncryptedPayload, server_sig_pk: bytes) -> None:
    """Verify the ML-DSA-65 signature on an encrypted payload.

    CRITICAL: Always verify BEFORE decryption, and always against the key pinned
    at inbox creation rather than the one carried in the payload.

    Args:
        encrypted_data: The encrypted payload from the server.
        server_sig_pk: The pinned server signing public key.

    Raises:
        SignatureVerificationError: If signature verification fails.
    """
    if not validate_server_public_key(server_sig_pk):
        raise SignatureVerificationError(
            f"Invalid server public key length: {len(server_sig_pk)}, "
            f"expected {MLDSA65_PUBLIC_KEY_SIZE}"
        )

    try:
        signature = from_base64url(encrypted_data["sig"])
        transcript = build_transcript(encrypted_data)
        valid = mldsa_verify(server_sig_pk, transcript, signature)
    except Exception as e:
        raise SignatureVerificationError(
            f"SIGNATURE VERIFICATION FAILED - Data may be tampered! Error: {e}"
        ) from e

    if not valid:
        raise SignatureVerificationError("SIGNATURE VERIFICATION FAILED - Data may be tampered!")


def verify_signature_safe(encrypted_data: EncryptedPayload, server_sig_pk: bytes) -> bool:
    """Verify the ML-DSA-65 signature without raising exceptions."""
    try:
        verify_signature(encrypted_data, server_sig_pk)
        return True
    except SignatureVerificationError:
        return False
