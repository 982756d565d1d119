"""Cryptographic operations for pqinbox."""

from .constants import HKDF_CONTEXT, MLDSA65_PUBLIC_KEY_SIZE
from .decrypt import decrypt, decrypt_json, decrypt_metadata, decrypt_parsed, decrypt_raw
from .keypair import (
    Keypair,
    compute_inbox_hash,
    derive_key,
    derive_public_key_from_secret,
    generate_keypair,
    validate_keypair,
)
from .signature import (
    build_transcript,
    validate_server_public_key,
    verify_signature,
    verify_signature_safe,
)
from .utils import Base64URLDecodeError, from_base64url, to_base64url
from .validation import validate_payload

__all__ = [
    "HKDF_CONTEXT",
    "MLDSA65_PUBLIC_KEY_SIZE",
    "Base64URLDecodeError",
    "Keypair",
    "build_transcript",
    "compute_inbox_hash",
    "decrypt",
    "decrypt_json",
    "decrypt_metadata",
    "decrypt_parsed",
    "decrypt_raw",
    "derive_key",
    "derive_public_key_from_secret",
    "from_base64url",
    "generate_keypair",
    "to_base64url",
    "validate_keypair",
    "validate_payload",
    "validate_server_public_key",
    "verify_signature",
    "verify_signature_safe",
]
