"""Shared fixtures: real signed envelopes for encrypted and plain inboxes."""

from __future__ import annotations

import base64
import json
import os
from typing import Any

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pqcrypto.kem.ml_kem_768 import encrypt as mlkem_encapsulate
from pqcrypto.sign.ml_dsa_65 import generate_keypair as mldsa_generate_keypair
from pqcrypto.sign.ml_dsa_65 import sign as mldsa_sign

from pqinbox.crypto import Keypair, derive_key, generate_keypair, to_base64url
from pqinbox.crypto.constants import (
    AES_GCM_NONCE_SIZE,
    EXPECTED_AEAD,
    EXPECTED_KDF,
    EXPECTED_KEM,
    EXPECTED_SIG,
    HKDF_CONTEXT,
)

RECEIVED_AT = "2024-01-15T10:30:00Z"

_SIGNED_FIELDS = ("ct_kem", "nonce", "aad", "ciphertext", "server_sig_pk")


def _b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def sign_payload(payload: dict[str, Any], server_sig_sk: bytes) -> dict[str, Any]:
    """(Re)compute the signature of a payload over its current fields."""
    algs = payload["algs"]
    transcript = b"".join(
        [
            bytes([payload["v"]]),
            f"{algs['kem']}:{algs['sig']}:{algs['aead']}:{algs['kdf']}".encode(),
            HKDF_CONTEXT.encode(),
            *(_b64url_decode(payload[name]) for name in _SIGNED_FIELDS),
        ]
    )
    payload["sig"] = to_base64url(mldsa_sign(server_sig_sk, transcript))
    return payload


class EnvelopeFactory:
    """Builds server-shaped envelopes for one inbox.

    With a keypair, parts are encrypted to it and signed by the server key;
    without one, parts are plain base64 JSON.
    """

    def __init__(
        self,
        keypair: Keypair | None,
        server_sig_pk: bytes,
        server_sig_sk: bytes,
    ) -> None:
        self.keypair = keypair
        self.server_sig_pk = server_sig_pk
        self.server_sig_sk = server_sig_sk

    @property
    def pinned_key(self) -> str | None:
        return to_base64url(self.server_sig_pk) if self.keypair is not None else None

    def encrypt(self, plaintext: bytes, aad: bytes = b"pqinbox-test-aad") -> dict[str, Any]:
        assert self.keypair is not None
        ct_kem, shared_secret = mlkem_encapsulate(self.keypair.public_key)
        nonce = os.urandom(AES_GCM_NONCE_SIZE)
        aes_key = derive_key(bytes(shared_secret), bytes(ct_kem), aad)
        ciphertext = AESGCM(aes_key).encrypt(nonce, plaintext, aad)
        payload: dict[str, Any] = {
            "v": 1,
            "algs": {
                "kem": EXPECTED_KEM,
                "sig": EXPECTED_SIG,
                "aead": EXPECTED_AEAD,
                "kdf": EXPECTED_KDF,
            },
            "ct_kem": to_base64url(ct_kem),
            "nonce": to_base64url(nonce),
            "aad": to_base64url(aad),
            "ciphertext": to_base64url(ciphertext),
            "server_sig_pk": to_base64url(self.server_sig_pk),
            "sig": "",
        }
        return sign_payload(payload, self.server_sig_sk)

    def _part(self, data: dict[str, Any]) -> Any:
        encoded = json.dumps(data).encode("utf-8")
        if self.keypair is not None:
            return self.encrypt(encoded)
        return base64.b64encode(encoded).decode("ascii")

    def envelope(
        self,
        email_id: str = "email-1",
        *,
        subject: str = "Welcome",
        from_address: str = "sender@example.com",
        to: list[str] | None = None,
        text: str | None = "Hello there",
        html: str | None = None,
        is_read: bool = False,
        include_content: bool = True,
        **parsed_extra: Any,
    ) -> dict[str, Any]:
        metadata = {
            "from": from_address,
            "to": to or ["inbox@pqinbox.dev"],
            "subject": subject,
            "receivedAt": RECEIVED_AT,
        }
        parsed = {"text": text, "html": html, "headers": {}, **parsed_extra}
        prefix = "encrypted" if self.keypair is not None else ""
        meta_key = "encryptedMetadata" if prefix else "metadata"
        parsed_key = "encryptedParsed" if prefix else "parsed"

        envelope: dict[str, Any] = {
            "id": email_id,
            "inboxId": self.keypair.inbox_hash if self.keypair is not None else "plain-hash",
            "receivedAt": RECEIVED_AT,
            "isRead": is_read,
            meta_key: self._part(metadata),
        }
        if include_content:
            envelope[parsed_key] = self._part(parsed)
        return envelope

    def raw(self, email_id: str, mime: str) -> dict[str, Any]:
        encoded = base64.b64encode(mime.encode("utf-8"))
        if self.keypair is not None:
            return {"id": email_id, "encryptedRaw": self.encrypt(encoded)}
        return {"id": email_id, "raw": encoded.decode("ascii")}


@pytest.fixture(scope="session")
def server_keys() -> tuple[bytes, bytes]:
    """ML-DSA-65 (public, secret) server signing keys."""
    public_key, secret_key = mldsa_generate_keypair()
    return bytes(public_key), bytes(secret_key)


@pytest.fixture
def keypair() -> Keypair:
    return generate_keypair()


@pytest.fixture
def encrypted_factory(keypair: Keypair, server_keys: tuple[bytes, bytes]) -> EnvelopeFactory:
    return EnvelopeFactory(keypair, *server_keys)


@pytest.fixture
def plain_factory(server_keys: tuple[bytes, bytes]) -> EnvelopeFactory:
    return EnvelopeFactory(None, *server_keys)
