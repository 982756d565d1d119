"""Decryption operations for pqinbox."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pqcrypto.kem.ml_kem_768 import decrypt as mlkem_decapsulate

from ..errors import DecryptionError, InvalidPayloadError
from ..types import EncryptedPayload
from .keypair import Keypair, derive_key
from .signature import verify_signature
from .utils import from_base64url
from .validation import validate_payload


def decrypt(
    encrypted_data: EncryptedPayload,
    keypair: Keypair,
    pinned_server_key: str,
) -> bytes:
    """Validate, verify and decrypt an encrypted payload.

    CRITICAL: Signature is verified BEFORE decryption, against the pinned key.

    Args:
        encrypted_data: The encrypted payload from the server.
        keypair: The inbox keypair.
        pinned_server_key: Server signing key (base64url) pinned at inbox creation.

    Returns:
        The decrypted plaintext bytes.

    Raises:
        EnvelopeError: If the payload is malformed, unsupported or undecryptable.
        SecurityError: If the server key or the signature does not check out.
    """
    # Step 1: Structure, version, algorithms, sizes, pinned key
    validate_payload(encrypted_data, pinned_server_key)

    # Step 2: Verify signature against the pinned key (security-critical)
    verify_signature(encrypted_data, from_base64url(pinned_server_key))

    ct_kem = from_base64url(encrypted_data["ct_kem"])
    aad = from_base64url(encrypted_data["aad"])
    nonce = from_base64url(encrypted_data["nonce"])
    ciphertext = from_base64url(encrypted_data["ciphertext"])

    try:
        # Step 3: KEM decapsulation
        shared_secret = mlkem_decapsulate(keypair.secret_key, ct_kem)

        # Step 4: Key derivation (HKDF-SHA-512)
        aes_key = derive_key(bytes(shared_secret), ct_kem, aad)

        # Step 5: AES-256-GCM decryption
        return AESGCM(aes_key).decrypt(nonce, ciphertext, aad)
    except InvalidTag as e:
        raise DecryptionError("Decryption failed: authentication tag mismatch") from e
    except Exception as e:
        raise DecryptionError(f"Decryption failed: {type(e).__name__}") from e


def decrypt_json(
    encrypted_data: EncryptedPayload,
    keypair: Keypair,
    pinned_server_key: str,
    context: str = "content",
) -> dict[str, Any]:
    """Decrypt and parse a JSON object.

    Args:
        encrypted_data: The encrypted payload.
        keypair: The inbox keypair.
        pinned_server_key: Server signing key pinned at inbox creation.
        context: Description of content type for error messages.

    Raises:
        InvalidPayloadError: If the plaintext is not a JSON object.
    """
    plaintext = decrypt(encrypted_data, keypair, pinned_server_key)
    try:
        data = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidPayloadError(f"Failed to parse decrypted {context} as JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidPayloadError(f"Decrypted {context} is not a JSON object")
    return data


def decrypt_metadata(
    encrypted_data: EncryptedPayload, keypair: Keypair, pinned_server_key: str
) -> dict[str, Any]:
    """Decrypt and parse email metadata."""
    return decrypt_json(encrypted_data, keypair, pinned_server_key, context="metadata")


def decrypt_parsed(
    encrypted_data: EncryptedPayload, keypair: Keypair, pinned_server_key: str
) -> dict[str, Any]:
    """Decrypt and parse email content."""
    return decrypt_json(encrypted_data, keypair, pinned_server_key, context="content")


def decrypt_raw(encrypted_data: EncryptedPayload, keypair: Keypair, pinned_server_key: str) -> str:
    """Decrypt raw email content.

    The plaintext is the base64-encoded MIME source.

    Raises:
        InvalidPayloadError: If the decrypted content cannot be decoded.
    """
    plaintext = decrypt(encrypted_data, keypair, pinned_server_key)
    try:
        return base64.b64decode(plaintext.decode("utf-8")).decode("utf-8")
    except (UnicodeDecodeError, binascii.Error, ValueError) as e:
        raise InvalidPayloadError(f"Failed to decode decrypted raw email: {e}") from e
