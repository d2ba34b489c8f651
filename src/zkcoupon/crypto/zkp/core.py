"""
Core ZKP types and interfaces.

Proofs are opaque to the protocol: a proof carries a kind tag, the scheme
that produced it, the backend-specific proof bytes and the digest of the
public inputs it was generated for. The public inputs themselves form a
tagged variant, one shape per proof kind, so a single verifier can dispatch
on the tag.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Tuple, Union

from ..hashing import Hash, Hashable, SHA256Hasher


class ProofKind(Enum):
    """What a proof attests to."""

    ISSUANCE = "issuance"
    REDEMPTION = "redemption"
    RECOVERY = "recovery"


class ProofScheme(Enum):
    """Proof systems supported by the verifier."""

    HMAC_SHA256 = "hmac_sha256"  # symmetric, development and testing
    ECDSA_SECP256K1 = "ecdsa_secp256k1"


@dataclass
class ZKPConfig:
    """Limits applied before any backend sees a proof."""

    max_proof_size: int = 64 * 1024
    max_field_size: int = 1024
    max_batch_size: int = 100
    max_workers: int = 4

    def validate(self) -> None:
        """Validate configuration parameters."""
        if self.max_proof_size <= 0:
            raise ValueError("max_proof_size must be positive")
        if self.max_field_size <= 0:
            raise ValueError("max_field_size must be positive")
        if self.max_batch_size <= 0:
            raise ValueError("max_batch_size must be positive")
        if self.max_workers <= 0:
            raise ValueError("max_workers must be positive")


class ZKPError(Exception):
    """Malformed proof material. Never crosses the verifier boundary."""


@dataclass(frozen=True)
class IssuanceInputs:
    """Binds a purchase-eligibility claim to a program, wallet and coupon terms."""

    program_id: str
    owner_wallet: str
    metadata_commitment: str
    key_version: int

    kind = ProofKind.ISSUANCE

    def fields(self) -> Tuple[Hashable, ...]:
        return (self.program_id, self.owner_wallet, self.metadata_commitment, self.key_version)


@dataclass(frozen=True)
class RedemptionInputs:
    """Binds a specific coupon to its owner wallet."""

    token_id: str
    owner_wallet: str
    key_version: int

    kind = ProofKind.REDEMPTION

    def fields(self) -> Tuple[Hashable, ...]:
        return (self.token_id, self.owner_wallet, self.key_version)


@dataclass(frozen=True)
class RecoveryInputs:
    """Binds the rebinding of a wallet from one identity commitment to another."""

    wallet_address: str
    current_identity_commitment: str
    new_identity_commitment: str

    kind = ProofKind.RECOVERY

    def fields(self) -> Tuple[Hashable, ...]:
        return (
            self.wallet_address,
            self.current_identity_commitment,
            self.new_identity_commitment,
        )


PublicInputs = Union[IssuanceInputs, RedemptionInputs, RecoveryInputs]

INPUT_TYPES = {
    ProofKind.ISSUANCE: IssuanceInputs,
    ProofKind.REDEMPTION: RedemptionInputs,
    ProofKind.RECOVERY: RecoveryInputs,
}


def public_input_digest(inputs: PublicInputs) -> Hash:
    """Domain-separated digest of a public-input variant."""
    return SHA256Hasher.hash_fields(f"zkcoupon/{inputs.kind.value}/v1", inputs.fields())


def public_inputs_from_dict(kind: ProofKind, data: Dict[str, Any]) -> PublicInputs:
    """Build the public-input variant for ``kind`` from a plain mapping."""
    input_type = INPUT_TYPES[kind]
    try:
        return input_type(**data)
    except TypeError as e:
        raise ZKPError(f"Public inputs do not match {kind.value} shape: {e}")


@dataclass(frozen=True)
class Proof:
    """A proof as submitted by the proof generation service."""

    kind: ProofKind
    scheme: ProofScheme
    proof_data: bytes
    public_input_hash: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "scheme": self.scheme.value,
            "proof_data": self.proof_data.hex(),
            "public_input_hash": self.public_input_hash.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Proof":
        try:
            return cls(
                kind=ProofKind(data["kind"]),
                scheme=ProofScheme(data["scheme"]),
                proof_data=bytes.fromhex(data["proof_data"]),
                public_input_hash=bytes.fromhex(data["public_input_hash"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ZKPError(f"Invalid proof data: {e}")

    def to_bytes(self) -> bytes:
        """Serialize proof to bytes."""
        return json.dumps(self.to_dict(), sort_keys=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "Proof":
        """Deserialize proof from bytes."""
        try:
            parsed = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ZKPError(f"Invalid proof data: {e}")
        if not isinstance(parsed, dict):
            raise ZKPError("Invalid proof data: expected an object")
        return cls.from_dict(parsed)

    def get_hash(self) -> str:
        """Stable identifier of this exact proof."""
        return SHA256Hasher.hash(self.to_bytes()).to_hex()


@dataclass(frozen=True)
class VerificationKey:
    """Verification key registered for a program (or a recovery key)."""

    key_data: bytes
    scheme: ProofScheme
    version: int = 1

    def get_hash(self) -> str:
        return SHA256Hasher.hash(self.key_data).to_hex()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key_data": self.key_data.hex(),
            "scheme": self.scheme.value,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationKey":
        try:
            return cls(
                key_data=bytes.fromhex(data["key_data"]),
                scheme=ProofScheme(data["scheme"]),
                version=int(data.get("version", 1)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ZKPError(f"Invalid verification key: {e}")


@dataclass(frozen=True)
class ProvingKey:
    """Secret counterpart of a verification key, held by the proof service."""

    key_data: bytes
    scheme: ProofScheme
    version: int = 1

    def __repr__(self) -> str:
        return f"ProvingKey(scheme={self.scheme.value}, version={self.version})"


class ProofBackend(ABC):
    """One proof system. Backends check proof bytes against a digest."""

    scheme: ProofScheme

    @abstractmethod
    def prove(self, digest: Hash, proving_key: ProvingKey) -> bytes:
        """Produce proof bytes for a public-input digest."""
        pass

    @abstractmethod
    def verify(self, proof_data: bytes, digest: Hash, key: VerificationKey) -> bool:
        """Check proof bytes. May raise ZKPError on malformed material."""
        pass

    @abstractmethod
    def generate_keypair(self, version: int = 1) -> Tuple[ProvingKey, VerificationKey]:
        """Create a fresh proving/verification key pair."""
        pass
