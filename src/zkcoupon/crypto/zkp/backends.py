"""
ZKP backend implementations.

The circuit-level proving system is external to the protocol. These
backends implement the proof contract with primitives from ``cryptography``:
an HMAC scheme for development and tests, and an ECDSA attestation scheme in
which an eligibility authority signs the public-input digest.
"""

import secrets
from typing import Dict, Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from ...logging import get_logger
from ..hashing import Hash
from ..signatures import PrivateKey, PublicKey, Signature
from .core import (
    Proof,
    ProofBackend,
    ProofScheme,
    ProvingKey,
    PublicInputs,
    VerificationKey,
    ZKPError,
    public_input_digest,
)

logger = get_logger(__name__)


class HMACProofBackend(ProofBackend):
    """Symmetric scheme: the proving and verification keys are the same secret."""

    scheme = ProofScheme.HMAC_SHA256
    key_size = 32

    def prove(self, digest: Hash, proving_key: ProvingKey) -> bytes:
        return self._mac(proving_key.key_data, digest)

    def verify(self, proof_data: bytes, digest: Hash, key: VerificationKey) -> bool:
        if len(key.key_data) != self.key_size:
            raise ZKPError("HMAC key has wrong length")
        h = hmac.HMAC(key.key_data, hashes.SHA256())
        h.update(digest.value)
        try:
            h.verify(proof_data)
            return True
        except InvalidSignature:
            return False

    def generate_keypair(self, version: int = 1) -> Tuple[ProvingKey, VerificationKey]:
        secret = secrets.token_bytes(self.key_size)
        return (
            ProvingKey(secret, self.scheme, version),
            VerificationKey(secret, self.scheme, version),
        )

    def _mac(self, key: bytes, digest: Hash) -> bytes:
        h = hmac.HMAC(key, hashes.SHA256())
        h.update(digest.value)
        return h.finalize()


class ECDSAProofBackend(ProofBackend):
    """Attestation scheme: secp256k1 signature over the public-input digest."""

    scheme = ProofScheme.ECDSA_SECP256K1

    def prove(self, digest: Hash, proving_key: ProvingKey) -> bytes:
        return PrivateKey.from_bytes(proving_key.key_data).sign(digest).to_bytes()

    def verify(self, proof_data: bytes, digest: Hash, key: VerificationKey) -> bool:
        try:
            public_key = PublicKey.from_bytes(key.key_data)
            signature = Signature.from_bytes(proof_data)
        except ValueError as e:
            raise ZKPError(str(e))
        return public_key.verify(signature, digest)

    def generate_keypair(self, version: int = 1) -> Tuple[ProvingKey, VerificationKey]:
        private_key = PrivateKey.generate()
        return (
            ProvingKey(private_key.to_bytes(), self.scheme, version),
            VerificationKey(
                private_key.get_public_key().to_bytes(compressed=True),
                self.scheme,
                version,
            ),
        )


_BACKENDS: Dict[ProofScheme, ProofBackend] = {
    ProofScheme.HMAC_SHA256: HMACProofBackend(),
    ProofScheme.ECDSA_SECP256K1: ECDSAProofBackend(),
}


def get_backend(scheme: ProofScheme) -> ProofBackend:
    """Return the backend for a scheme."""
    try:
        return _BACKENDS[scheme]
    except KeyError:
        raise ValueError(f"Unsupported proof scheme: {scheme}")


def generate_keypair(
    scheme: ProofScheme = ProofScheme.ECDSA_SECP256K1, version: int = 1
) -> Tuple[ProvingKey, VerificationKey]:
    """Create a key pair for a program or recovery key."""
    return get_backend(scheme).generate_keypair(version)


class ProofGenerator:
    """Client-side prover, as run by the proof generation service."""

    def __init__(self, proving_key: ProvingKey, backend: Optional[ProofBackend] = None):
        self.proving_key = proving_key
        self.backend = backend or get_backend(proving_key.scheme)

    def prove(self, inputs: PublicInputs) -> Proof:
        """Produce a proof for the given public inputs."""
        digest = public_input_digest(inputs)
        proof = Proof(
            kind=inputs.kind,
            scheme=self.backend.scheme,
            proof_data=self.backend.prove(digest, self.proving_key),
            public_input_hash=digest.value,
        )
        logger.debug(
            "Generated proof",
            extra={"kind": inputs.kind.value, "scheme": self.backend.scheme.value},
        )
        return proof
