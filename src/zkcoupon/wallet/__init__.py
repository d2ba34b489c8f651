"""Wallet directory and recovery proofs."""

from .directory import WalletDirectory
from .recovery import RecoveryProof, build_recovery_proof, recovery_key_pair

__all__ = [
    "WalletDirectory",
    "RecoveryProof",
    "build_recovery_proof",
    "recovery_key_pair",
]
