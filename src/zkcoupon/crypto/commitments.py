"""
One-way commitments used by the protocol.

Identity commitments stand in for an email address, wallet addresses are
derived from identity commitments, recovery commitments bind a recovery
public key, and metadata commitments hide coupon terms behind a salt.
All commitments are lowercase hex strings.
"""

import json
import re
import secrets
from typing import Any, Dict, Optional, Tuple, Union

from .hashing import SHA256Hasher
from .signatures import PublicKey

DEFAULT_IDENTITY_DOMAIN = "zkcoupon/identity/v1"
ADDRESS_DOMAIN = "zkcoupon/wallet-address/v1"
RECOVERY_DOMAIN = "zkcoupon/recovery-key/v1"
METADATA_DOMAIN = "zkcoupon/coupon-metadata/v1"

_COMMITMENT_RE = re.compile(r"[0-9a-f]{64}")
_ADDRESS_RE = re.compile(r"0x[0-9a-f]{40}")


def normalize_email(email: str) -> str:
    """Trim and lowercase an email address; reject obviously invalid input."""
    normalized = email.strip().lower()
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain or "@" in domain:
        raise ValueError("Invalid email address")
    return normalized


def identity_commitment(email: str, domain: str = DEFAULT_IDENTITY_DOMAIN) -> str:
    """Commit to an email address. The same email always yields the same value."""
    return SHA256Hasher.hash_fields(domain, [normalize_email(email)]).to_hex()


def derive_wallet_address(commitment: str) -> str:
    """Derive the wallet address for an identity commitment."""
    if not is_commitment(commitment):
        raise ValueError("Identity commitment must be 64 lowercase hex characters")
    digest = SHA256Hasher.hash_fields(ADDRESS_DOMAIN, [bytes.fromhex(commitment)])
    return "0x" + digest.value[:20].hex()


def recovery_commitment(public_key: Union[PublicKey, bytes]) -> str:
    """Commit to a recovery public key (compressed encoding)."""
    if isinstance(public_key, PublicKey):
        key_bytes = public_key.to_bytes(compressed=True)
    else:
        key_bytes = PublicKey.from_bytes(public_key).to_bytes(compressed=True)
    return SHA256Hasher.hash_fields(RECOVERY_DOMAIN, [key_bytes]).to_hex()


def metadata_commitment(
    metadata: Dict[str, Any], salt: Optional[bytes] = None
) -> Tuple[str, bytes]:
    """Commit to coupon terms.

    Returns the commitment and the salt; the salt must be kept by whoever
    needs to open the commitment later.
    """
    salt = salt if salt is not None else secrets.token_bytes(16)
    canonical = json.dumps(metadata, sort_keys=True, separators=(",", ":"))
    commitment = SHA256Hasher.hash_fields(METADATA_DOMAIN, [canonical, salt])
    return commitment.to_hex(), salt


def is_commitment(value: Any) -> bool:
    return isinstance(value, str) and bool(_COMMITMENT_RE.fullmatch(value))


def is_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.fullmatch(value))
