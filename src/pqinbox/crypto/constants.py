"""Cryptographic constants for pqinbox."""

# Domain-separation context for HKDF and the signature transcript
HKDF_CONTEXT = "pqinbox:email:v1"

# Envelope protocol version and export file format version
PROTOCOL_VERSION = 1
EXPORT_VERSION = 1

# Algorithm identifiers accepted in envelopes
EXPECTED_KEM = "ML-KEM-768"
EXPECTED_SIG = "ML-DSA-65"
EXPECTED_AEAD = "AES-256-GCM"
EXPECTED_KDF = "HKDF-SHA-512"

# ML-DSA-65 sizes in bytes
MLDSA65_PUBLIC_KEY_SIZE = 1952
MLDSA65_SIGNATURE_SIZE = 3309

# ML-KEM-768 sizes in bytes
MLKEM768_PUBLIC_KEY_SIZE = 1184
MLKEM768_SECRET_KEY_SIZE = 2400
MLKEM768_CIPHERTEXT_SIZE = 1088
# CPA private key size: 12 * k * n / 8 where k=3, n=256
MLKEM768_CPA_PRIVATE_KEY_SIZE = 1152

# AES-256-GCM
AES_KEY_SIZE = 32
AES_GCM_NONCE_SIZE = 12
AES_GCM_TAG_SIZE = 16
