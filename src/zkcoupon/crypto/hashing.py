"""
Hash functions and utilities for zkcoupon.

SHA-256 hashing with domain separation and unambiguous field encoding, used
for identity commitments, wallet addresses and proof public-input digests.
"""

import hashlib
import hmac
from dataclasses import dataclass
from typing import Iterable, Union

Hashable = Union[bytes, str, int]


@dataclass(frozen=True)
class Hash:
    """Immutable hash value with comparison and string representation."""

    value: bytes

    def __post_init__(self) -> None:
        if len(self.value) != 32:
            raise ValueError("Hash must be exactly 32 bytes")

    def __str__(self) -> str:
        return self.value.hex()

    def __repr__(self) -> str:
        return f"Hash('{self.value.hex()}')"

    @classmethod
    def from_hex(cls, hex_string: str) -> "Hash":
        """Create a Hash from a hexadecimal string."""
        return cls(bytes.fromhex(hex_string))

    def to_hex(self) -> str:
        """Convert hash to hexadecimal string."""
        return self.value.hex()

    def matches(self, other: Union["Hash", bytes]) -> bool:
        """Constant-time equality against another hash or raw digest."""
        other_value = other.value if isinstance(other, Hash) else other
        return hmac.compare_digest(self.value, other_value)


def encode_field(item: Hashable) -> bytes:
    """Encode one field with a type tag and a 4-byte length prefix.

    The prefix makes concatenations unambiguous: ``("ab", "c")`` and
    ``("a", "bc")`` never encode to the same bytes.
    """
    if isinstance(item, bool):
        raise TypeError("bool fields are not supported")
    if isinstance(item, int):
        tag = b"i"
        raw = str(item).encode("ascii")
    elif isinstance(item, str):
        tag = b"s"
        raw = item.encode("utf-8")
    elif isinstance(item, (bytes, bytearray)):
        tag = b"b"
        raw = bytes(item)
    else:
        raise TypeError(f"Unsupported field type: {type(item).__name__}")
    return tag + len(raw).to_bytes(4, byteorder="big") + raw


class SHA256Hasher:
    """SHA-256 hasher with protocol-specific utilities."""

    @staticmethod
    def hash(data: Union[bytes, str]) -> Hash:
        """
        Hash data using SHA-256.

        Args:
            data: Data to hash (bytes or string)

        Returns:
            Hash object containing the SHA-256 hash
        """
        if isinstance(data, str):
            data = data.encode("utf-8")

        return Hash(hashlib.sha256(data).digest())

    @staticmethod
    def hash_fields(domain: str, items: Iterable[Hashable]) -> Hash:
        """
        Hash a sequence of fields under a domain tag.

        Args:
            domain: Domain separation tag, e.g. ``"zkcoupon/issuance/v1"``
            items: Fields to hash, in order

        Returns:
            Hash of the domain tag followed by the encoded fields
        """
        hasher = hashlib.sha256()
        hasher.update(encode_field(domain))
        for item in items:
            hasher.update(encode_field(item))
        return Hash(hasher.digest())
