"""
Recovery proofs.

A wallet is created with a recovery commitment: the hash of a secp256k1
recovery public key. Recovering the wallet means presenting that public key
together with a ``RECOVERY`` proof, signed by the matching private key, that
binds the wallet address, the identity commitment the holder believes is
current and the new identity commitment.
"""

from dataclasses import dataclass
from typing import Any, Dict

from ..crypto.signatures import PrivateKey
from ..crypto.zkp import (
    Proof,
    ProofGenerator,
    ProofScheme,
    ProvingKey,
    RecoveryInputs,
    VerificationKey,
    ZKPError,
)


@dataclass(frozen=True)
class RecoveryProof:
    """Proof of control over a wallet's recovery key."""

    proof: Proof
    recovery_key: VerificationKey
    prior_identity_commitment: str

    def public_inputs(self, wallet_address: str, new_identity_commitment: str) -> RecoveryInputs:
        return RecoveryInputs(
            wallet_address=wallet_address,
            current_identity_commitment=self.prior_identity_commitment,
            new_identity_commitment=new_identity_commitment,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proof": self.proof.to_dict(),
            "recovery_key": self.recovery_key.to_dict(),
            "prior_identity_commitment": self.prior_identity_commitment,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecoveryProof":
        try:
            return cls(
                proof=Proof.from_dict(data["proof"]),
                recovery_key=VerificationKey.from_dict(data["recovery_key"]),
                prior_identity_commitment=str(data["prior_identity_commitment"]),
            )
        except (KeyError, TypeError) as e:
            raise ZKPError(f"Invalid recovery proof: {e}")


def recovery_key_pair(proving_key: ProvingKey) -> VerificationKey:
    """Public verification key for an ECDSA recovery proving key."""
    if proving_key.scheme != ProofScheme.ECDSA_SECP256K1:
        raise ValueError("Recovery keys must use ecdsa_secp256k1")
    public_key = PrivateKey.from_bytes(proving_key.key_data).get_public_key()
    return VerificationKey(
        key_data=public_key.to_bytes(compressed=True),
        scheme=ProofScheme.ECDSA_SECP256K1,
        version=proving_key.version,
    )


def build_recovery_proof(
    proving_key: ProvingKey,
    wallet_address: str,
    current_identity_commitment: str,
    new_identity_commitment: str,
) -> RecoveryProof:
    """Sign a rebinding of ``wallet_address`` with the wallet's recovery key."""
    inputs = RecoveryInputs(
        wallet_address=wallet_address,
        current_identity_commitment=current_identity_commitment,
        new_identity_commitment=new_identity_commitment,
    )
    return RecoveryProof(
        proof=ProofGenerator(proving_key).prove(inputs),
        recovery_key=recovery_key_pair(proving_key),
        prior_identity_commitment=current_identity_commitment,
    )
