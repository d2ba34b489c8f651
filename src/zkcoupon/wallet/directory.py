"""
Wallet directory.

Maps identity commitments to custodial-free wallets. The address of a wallet
is derived one-way from the identity commitment it was created with and
never changes; recovery rebinds the wallet to a new commitment and retires
the old one.
"""

import time
from dataclasses import replace
from typing import Callable, Optional

from ..core.models import Wallet
from ..crypto.commitments import derive_wallet_address, is_commitment, recovery_commitment
from ..crypto.zkp import ProofScheme, ProofVerifier
from ..errors import (
    InvalidProofError,
    RecoveryConflictError,
    ValidationError,
    WalletExistsError,
    WalletNotFoundError,
)
from ..logging import LogContext, get_logger
from ..storage import StateStore, Table
from .recovery import RecoveryProof

logger = get_logger(__name__)


class WalletDirectory:
    """Identity commitment to wallet bindings."""

    def __init__(
        self,
        store: StateStore,
        verifier: Optional[ProofVerifier] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.verifier = verifier or ProofVerifier()
        self.clock = clock

    def create_wallet(self, identity_commitment: str, recovery_commitment: str) -> str:
        """Create the wallet for an identity commitment and return its address."""
        _require_commitment("identity_commitment", identity_commitment)
        _require_commitment("recovery_commitment", recovery_commitment)
        address = derive_wallet_address(identity_commitment)

        keys = [(Table.IDENTITIES, identity_commitment), (Table.WALLETS, address)]
        with self.store.transaction(keys) as txn:
            # A recovered wallet keeps its address, so the retired commitment
            # cannot claim it again.
            if txn.exists(Table.WALLETS, address) or txn.exists(
                Table.IDENTITIES, identity_commitment
            ):
                raise WalletExistsError(f"Wallet {address} already exists")
            wallet = Wallet(
                address=address,
                identity_commitment=identity_commitment,
                recovery_commitment=recovery_commitment,
                created_at=self.clock(),
            )
            txn.insert(Table.WALLETS, address, wallet)
            txn.insert(Table.IDENTITIES, identity_commitment, address)

        logger.info(
            "Created wallet",
            context=LogContext(component="wallet", wallet=address),
        )
        return address

    def get_wallet_address(self, identity_commitment: str) -> Optional[str]:
        """Address currently bound to a commitment, or None."""
        return self.store.get(Table.IDENTITIES, identity_commitment)

    def get_wallet(self, address: str) -> Wallet:
        wallet = self.store.get(Table.WALLETS, address)
        if wallet is None:
            raise WalletNotFoundError(f"Wallet {address} not found", field="address", value=address)
        return wallet

    def recover_wallet(
        self,
        address: str,
        new_identity_commitment: str,
        recovery_proof: RecoveryProof,
    ) -> Wallet:
        """Rebind ``address`` to ``new_identity_commitment``.

        Of two concurrent recoveries built against the same current
        commitment, the second finds the wallet already rebound and fails
        with RecoveryConflictError.
        """
        _require_commitment("new_identity_commitment", new_identity_commitment)
        prior = recovery_proof.prior_identity_commitment

        keys = [
            (Table.WALLETS, address),
            (Table.IDENTITIES, prior),
            (Table.IDENTITIES, new_identity_commitment),
        ]
        with self.store.transaction(keys) as txn:
            wallet = txn.get(Table.WALLETS, address)
            if wallet is None:
                raise WalletNotFoundError(
                    f"Wallet {address} not found", field="address", value=address
                )

            self._verify_recovery(wallet, address, new_identity_commitment, recovery_proof)

            if wallet.identity_commitment != prior:
                logger.warning(
                    "Recovery lost against a concurrent rebinding",
                    context=LogContext(component="wallet", wallet=address),
                )
                raise RecoveryConflictError(f"Wallet {address} was rebound concurrently")
            if txn.exists(Table.IDENTITIES, new_identity_commitment):
                raise WalletExistsError("New identity commitment is already bound to a wallet")

            recovered = replace(
                wallet,
                identity_commitment=new_identity_commitment,
                recovered_at=self.clock(),
                recovery_count=wallet.recovery_count + 1,
            )
            txn.put(Table.WALLETS, address, recovered)
            txn.delete(Table.IDENTITIES, prior)
            txn.insert(Table.IDENTITIES, new_identity_commitment, address)

        logger.info(
            "Recovered wallet",
            context=LogContext(component="wallet", wallet=address),
            extra={"recovery_count": recovered.recovery_count},
        )
        return recovered

    def _verify_recovery(
        self,
        wallet: Wallet,
        address: str,
        new_identity_commitment: str,
        recovery_proof: RecoveryProof,
    ) -> None:
        key = recovery_proof.recovery_key
        if key.scheme != ProofScheme.ECDSA_SECP256K1:
            raise InvalidProofError()
        try:
            committed = recovery_commitment(key.key_data)
        except ValueError:
            raise InvalidProofError()
        if committed != wallet.recovery_commitment:
            logger.debug(
                "Recovery key does not match commitment",
                context=LogContext(component="wallet", wallet=address),
            )
            raise InvalidProofError()
        self.verifier.require(
            recovery_proof.proof,
            recovery_proof.public_inputs(address, new_identity_commitment),
            key,
        )


def _require_commitment(name: str, value: str) -> None:
    if not is_commitment(value):
        raise ValidationError(f"{name} must be 64 lowercase hex characters", field=name)
