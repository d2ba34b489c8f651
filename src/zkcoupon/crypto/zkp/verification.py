"""
ZKP verification.

``ProofVerifier.verify`` is a pure function of (proof, public inputs,
verification key). It holds no mutable state and may be called from any
number of threads. It fails closed: every malformed, mismatched or unknown
input yields ``False``, and the reason is only ever written to the debug log.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Tuple

from ...errors import InvalidProofError
from ...logging import get_logger
from .backends import get_backend
from .core import (
    Proof,
    ProofBackend,
    ProofScheme,
    PublicInputs,
    VerificationKey,
    ZKPConfig,
    ZKPError,
    public_input_digest,
)

logger = get_logger(__name__)

VerificationItem = Tuple[Proof, PublicInputs, Optional[VerificationKey]]


class ProofVerifier:
    """Single verifier capability shared by every proof kind."""

    def __init__(
        self,
        config: Optional[ZKPConfig] = None,
        backends: Optional[Dict[ProofScheme, ProofBackend]] = None,
    ):
        self.config = config or ZKPConfig()
        self.config.validate()
        self._backends = dict(backends) if backends else {}

    def verify(
        self,
        proof: Optional[Proof],
        public_inputs: Optional[PublicInputs],
        verification_key: Optional[VerificationKey],
    ) -> bool:
        """Return True only if ``proof`` is valid for ``public_inputs`` under the key."""
        try:
            reason = self._check(proof, public_inputs, verification_key)
        except (ZKPError, ValueError, TypeError, AttributeError) as e:
            reason = f"malformed input: {e}"

        if reason is not None:
            logger.debug("Proof rejected", extra={"reason": reason})
            return False
        return True

    def require(
        self,
        proof: Optional[Proof],
        public_inputs: Optional[PublicInputs],
        verification_key: Optional[VerificationKey],
    ) -> None:
        """Raise a generic InvalidProofError unless the proof verifies."""
        if not self.verify(proof, public_inputs, verification_key):
            raise InvalidProofError()

    def verify_batch(self, items: Sequence[VerificationItem]) -> List[bool]:
        """Verify independent proofs in parallel; results keep input order."""
        if len(items) > self.config.max_batch_size:
            raise ValueError(
                f"Batch of {len(items)} exceeds max_batch_size {self.config.max_batch_size}"
            )
        if not items:
            return []

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            return list(executor.map(lambda item: self.verify(*item), items))

    def _check(
        self,
        proof: Optional[Proof],
        public_inputs: Optional[PublicInputs],
        key: Optional[VerificationKey],
    ) -> Optional[str]:
        """Return the rejection reason, or None if the proof is valid."""
        if proof is None or public_inputs is None:
            return "missing proof or public inputs"
        if key is None:
            return "unknown verification key"
        if proof.kind != public_inputs.kind:
            return f"kind mismatch: {proof.kind.value} vs {public_inputs.kind.value}"
        if proof.scheme != key.scheme:
            return "scheme mismatch"
        if not proof.proof_data or len(proof.proof_data) > self.config.max_proof_size:
            return "proof size out of bounds"
        for value in public_inputs.fields():
            if isinstance(value, str) and (
                not value or len(value) > self.config.max_field_size
            ):
                return "public input field size out of bounds"

        digest = public_input_digest(public_inputs)
        if not digest.matches(proof.public_input_hash):
            return "public input hash mismatch"

        backend = self._backends.get(key.scheme) or get_backend(key.scheme)
        if not backend.verify(proof.proof_data, digest, key):
            return "proof check failed"
        return None
