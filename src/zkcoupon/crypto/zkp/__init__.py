"""
Zero-knowledge proof contract for zkcoupon.

The protocol treats proofs as opaque capabilities. This package defines the
tagged proof kinds and their public inputs, the backend abstraction, the
proof generator used by the external proof service, and the fail-closed
verifier used by the ledger and the wallet directory.
"""

from .backends import (
    ECDSAProofBackend,
    HMACProofBackend,
    ProofGenerator,
    generate_keypair,
    get_backend,
)
from .core import (
    IssuanceInputs,
    Proof,
    ProofBackend,
    ProofKind,
    ProofScheme,
    ProvingKey,
    PublicInputs,
    RecoveryInputs,
    RedemptionInputs,
    VerificationKey,
    ZKPConfig,
    ZKPError,
    public_input_digest,
    public_inputs_from_dict,
)
from .verification import ProofVerifier

__all__ = [
    # Core types
    "Proof",
    "ProofKind",
    "ProofScheme",
    "ProofBackend",
    "ProvingKey",
    "VerificationKey",
    "ZKPConfig",
    "ZKPError",
    # Public inputs
    "PublicInputs",
    "IssuanceInputs",
    "RedemptionInputs",
    "RecoveryInputs",
    "public_input_digest",
    "public_inputs_from_dict",
    # Backends
    "HMACProofBackend",
    "ECDSAProofBackend",
    "ProofGenerator",
    "generate_keypair",
    "get_backend",
    # Verification
    "ProofVerifier",
]
