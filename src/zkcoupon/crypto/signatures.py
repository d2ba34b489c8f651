"""
Digital signatures using ECDSA over the secp256k1 curve.

Used by the attestation proof scheme and by wallet recovery, where the
recovery key signs the rebinding of a wallet to a new identity commitment.
"""

from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from .hashing import Hash, SHA256Hasher

# secp256k1 group order
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


def _message_bytes(message: Union[bytes, str, Hash]) -> bytes:
    if isinstance(message, str):
        return message.encode("utf-8")
    if isinstance(message, Hash):
        return message.value
    return message


@dataclass(frozen=True)
class PrivateKey:
    """Immutable private key with cryptographic operations."""

    _key: ec.EllipticCurvePrivateKey

    def __post_init__(self) -> None:
        if not isinstance(self._key.curve, ec.SECP256K1):
            raise ValueError("Private key must use secp256k1 curve")

    @classmethod
    def generate(cls) -> "PrivateKey":
        """Generate a new random private key."""
        return cls(ec.generate_private_key(ec.SECP256K1()))

    @classmethod
    def from_bytes(cls, key_bytes: bytes) -> "PrivateKey":
        """Create a private key from raw bytes."""
        if len(key_bytes) != 32:
            raise ValueError("Private key must be exactly 32 bytes")

        value = int.from_bytes(key_bytes, byteorder="big")
        if not 0 < value < CURVE_ORDER:
            raise ValueError("Private key out of range")
        return cls(ec.derive_private_key(value, ec.SECP256K1()))

    @classmethod
    def from_hex(cls, hex_string: str) -> "PrivateKey":
        """Create a private key from hexadecimal string."""
        return cls.from_bytes(bytes.fromhex(hex_string))

    def to_bytes(self) -> bytes:
        """Convert private key to raw bytes."""
        private_value = self._key.private_numbers().private_value
        return private_value.to_bytes(32, byteorder="big")

    def to_hex(self) -> str:
        return self.to_bytes().hex()

    def get_public_key(self) -> "PublicKey":
        """Get the corresponding public key."""
        return PublicKey(self._key.public_key())

    def sign(self, message: Union[bytes, str, Hash]) -> "Signature":
        """Sign a message with this private key."""
        der_signature = self._key.sign(
            _message_bytes(message), ec.ECDSA(hashes.SHA256())
        )
        r, s = decode_dss_signature(der_signature)
        return Signature(r, s)

    def __str__(self) -> str:
        return f"PrivateKey('{self.to_hex()[:8]}...')"

    def __repr__(self) -> str:
        return "PrivateKey(<redacted>)"


@dataclass(frozen=True)
class PublicKey:
    """Immutable public key with cryptographic operations."""

    _key: ec.EllipticCurvePublicKey

    def __post_init__(self) -> None:
        if not isinstance(self._key.curve, ec.SECP256K1):
            raise ValueError("Public key must use secp256k1 curve")

    @classmethod
    def from_bytes(cls, key_bytes: bytes) -> "PublicKey":
        """Create a public key from raw bytes (compressed or uncompressed)."""
        if len(key_bytes) == 33:
            if key_bytes[0] not in (0x02, 0x03):
                raise ValueError("Invalid compressed public key format")
        elif len(key_bytes) == 65:
            if key_bytes[0] != 0x04:
                raise ValueError("Invalid uncompressed public key format")
        else:
            raise ValueError(
                "Public key must be 33 (compressed) or 65 (uncompressed) bytes"
            )

        try:
            key = ec.EllipticCurvePublicKey.from_encoded_point(
                ec.SECP256K1(), key_bytes
            )
        except ValueError as e:
            raise ValueError(f"Invalid public key: {e}")
        return cls(key)

    @classmethod
    def from_hex(cls, hex_string: str) -> "PublicKey":
        return cls.from_bytes(bytes.fromhex(hex_string))

    def to_bytes(self, compressed: bool = True) -> bytes:
        """Convert public key to raw bytes."""
        encoding = (
            PublicFormat.CompressedPoint
            if compressed
            else PublicFormat.UncompressedPoint
        )
        return self._key.public_bytes(Encoding.X962, encoding)

    def to_hex(self, compressed: bool = True) -> str:
        return self.to_bytes(compressed).hex()

    def fingerprint(self) -> Hash:
        """SHA-256 of the compressed encoding."""
        return SHA256Hasher.hash(self.to_bytes(compressed=True))

    def verify(self, signature: "Signature", message: Union[bytes, str, Hash]) -> bool:
        """Verify a signature against a message."""
        try:
            self._key.verify(
                signature.to_der(), _message_bytes(message), ec.ECDSA(hashes.SHA256())
            )
            return True
        except InvalidSignature:
            return False

    def __str__(self) -> str:
        return f"PublicKey('{self.to_hex()[:8]}...')"

    def __repr__(self) -> str:
        return f"PublicKey.from_hex('{self.to_hex()}')"


@dataclass(frozen=True)
class Signature:
    """Immutable ECDSA signature as raw (r, s)."""

    r: int
    s: int

    def __post_init__(self) -> None:
        if self.r <= 0 or self.s <= 0:
            raise ValueError("Signature components must be positive")
        if self.r >= CURVE_ORDER or self.s >= CURVE_ORDER:
            raise ValueError("Signature components must be less than curve order")

    @classmethod
    def from_bytes(cls, signature_bytes: bytes) -> "Signature":
        """Create a signature from 64 raw bytes (r || s)."""
        if len(signature_bytes) != 64:
            raise ValueError("Signature must be exactly 64 bytes")

        r = int.from_bytes(signature_bytes[:32], byteorder="big")
        s = int.from_bytes(signature_bytes[32:], byteorder="big")
        return cls(r, s)

    @classmethod
    def from_hex(cls, hex_string: str) -> "Signature":
        return cls.from_bytes(bytes.fromhex(hex_string))

    def to_bytes(self) -> bytes:
        return self.r.to_bytes(32, byteorder="big") + self.s.to_bytes(
            32, byteorder="big"
        )

    def to_hex(self) -> str:
        return self.to_bytes().hex()

    def to_der(self) -> bytes:
        return encode_dss_signature(self.r, self.s)
