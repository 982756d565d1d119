"""Encrypted payload validation for pqinbox.

Checks run in a fixed order so the first failure determines the error type:
structure, version, algorithms, field sizes, then the pinned server key.
"""

from __future__ import annotations

import hmac
from typing import Any

from ..errors import (
    InvalidAlgorithmError,
    InvalidPayloadError,
    InvalidSizeError,
    ServerKeyMismatchError,
    UnsupportedVersionError,
)
from ..types import EncryptedPayload
from .constants import (
    AES_GCM_NONCE_SIZE,
    EXPECTED_AEAD,
    EXPECTED_KDF,
    EXPECTED_KEM,
    EXPECTED_SIG,
    MLDSA65_PUBLIC_KEY_SIZE,
    MLDSA65_SIGNATURE_SIZE,
    MLKEM768_CIPHERTEXT_SIZE,
    PROTOCOL_VERSION,
)
from .utils import from_base64url

_REQUIRED_FIELDS = ("v", "algs", "ct_kem", "nonce", "aad", "ciphertext", "sig", "server_sig_pk")

# (algs key, expected value, label used in error messages)
_EXPECTED_ALGORITHMS = (
    ("kem", EXPECTED_KEM, "KEM"),
    ("sig", EXPECTED_SIG, "signature"),
    ("aead", EXPECTED_AEAD, "AEAD"),
    ("kdf", EXPECTED_KDF, "KDF"),
)

# (field, expected decoded size, label used in error messages)
_EXPECTED_SIZES = (
    ("ct_kem", MLKEM768_CIPHERTEXT_SIZE, "ct_kem"),
    ("nonce", AES_GCM_NONCE_SIZE, "nonce"),
    ("sig", MLDSA65_SIGNATURE_SIZE, "signature"),
    ("server_sig_pk", MLDSA65_PUBLIC_KEY_SIZE, "server_sig_pk"),
)


def validate_payload(encrypted_data: EncryptedPayload, pinned_server_key: str) -> None:
    """Validate an encrypted payload before any cryptographic work.

    Args:
        encrypted_data: The encrypted payload to validate.
        pinned_server_key: The server signature public key (base64url) captured
            at inbox creation. The payload's server_sig_pk must match exactly.

    Raises:
        InvalidPayloadError: If required fields are missing or undecodable.
        UnsupportedVersionError: If version is not supported.
        InvalidAlgorithmError: If algorithms don't match expected values.
        InvalidSizeError: If decoded fields have incorrect sizes.
        ServerKeyMismatchError: If server key doesn't match the pinned key.
    """
    _validate_structure(encrypted_data)
    _validate_version(encrypted_data)
    _validate_algorithms(encrypted_data["algs"])
    _validate_sizes(encrypted_data)
    _validate_server_key(encrypted_data, pinned_server_key)


def _validate_structure(encrypted_data: Any) -> None:
    if not isinstance(encrypted_data, dict):
        raise InvalidPayloadError("Encrypted payload must be an object")

    for name in _REQUIRED_FIELDS:
        if name not in encrypted_data:
            raise InvalidPayloadError(f"Missing required field: {name}")

    algs = encrypted_data["algs"]
    if not isinstance(algs, dict):
        raise InvalidPayloadError("Field 'algs' must be an object")
    for key, _, _ in _EXPECTED_ALGORITHMS:
        if key not in algs:
            raise InvalidPayloadError(f"Missing required field: algs.{key}")


def _validate_version(encrypted_data: EncryptedPayload) -> None:
    version = encrypted_data["v"]
    if version != PROTOCOL_VERSION:
        raise UnsupportedVersionError(
            f"Unsupported protocol version: {version}, expected {PROTOCOL_VERSION}"
        )


def _validate_algorithms(algs: dict[str, str]) -> None:
    for key, expected, label in _EXPECTED_ALGORITHMS:
        if algs[key] != expected:
            raise InvalidAlgorithmError(
                f"Unsupported {label} algorithm: {algs[key]}, expected {expected}"
            )


def _validate_sizes(encrypted_data: EncryptedPayload) -> None:
    for name, expected, label in _EXPECTED_SIZES:
        try:
            decoded = from_base64url(encrypted_data[name])  # type: ignore[literal-required]
        except (ValueError, TypeError) as e:
            raise InvalidPayloadError(f"Failed to decode {name}: {e}") from e
        if len(decoded) != expected:
            raise InvalidSizeError(
                f"Invalid {label} size: {len(decoded)} bytes, expected {expected}"
            )

    for name in ("aad", "ciphertext"):
        try:
            from_base64url(encrypted_data[name])  # type: ignore[literal-required]
        except (ValueError, TypeError) as e:
            raise InvalidPayloadError(f"Failed to decode {name}: {e}") from e


def _validate_server_key(encrypted_data: EncryptedPayload, pinned_server_key: str) -> None:
    """Constant-time comparison of the payload key against the pinned key."""
    payload_key = encrypted_data["server_sig_pk"]
    if not isinstance(payload_key, str) or not hmac.compare_digest(
        payload_key.encode("ascii", "replace"), pinned_server_key.encode("ascii", "replace")
    ):
        raise ServerKeyMismatchError(
            "Server public key in payload does not match pinned server key from inbox creation"
        )
