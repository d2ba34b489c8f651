"""
Cryptographic primitives for zkcoupon.

This module provides:
- Hash functions with domain separation (SHA-256)
- ECDSA signatures over secp256k1
- Identity, recovery and metadata commitments
- The zero-knowledge proof contract
"""

from .commitments import (
    derive_wallet_address,
    identity_commitment,
    is_address,
    is_commitment,
    metadata_commitment,
    normalize_email,
    recovery_commitment,
)
from .hashing import Hash, SHA256Hasher
from .signatures import PrivateKey, PublicKey, Signature

__all__ = [
    "Hash",
    "SHA256Hasher",
    "PrivateKey",
    "PublicKey",
    "Signature",
    "identity_commitment",
    "derive_wallet_address",
    "recovery_commitment",
    "metadata_commitment",
    "normalize_email",
    "is_commitment",
    "is_address",
]
