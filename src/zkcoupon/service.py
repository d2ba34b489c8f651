"""
Service facade.

Wires the five protocol components around one store and exposes the
surfaces used by the external collaborators: identity service, notification
service, proof generation service, merchant tooling and read-only portals.
The confirmation-gated flows (registration, login, recovery) consume their
token with the gateway's reservation protocol, so a token is spent only if
the action it authorizes succeeds.
"""

import time
from typing import Any, Callable, Dict, List, Optional

from .config import CouponConfig
from .confirmation import ConfirmationGateway, Reservation
from .core.context import CallerContext
from .core.events import InMemoryNotificationSink, NotificationSink
from .core.models import ConfirmationAction, ConfirmationToken, Coupon, Merchant, Program, Wallet
from .crypto.commitments import derive_wallet_address, identity_commitment, is_commitment
from .crypto.zkp import Proof, ProofVerifier, PublicInputs, VerificationKey, ZKPConfig
from .errors import ValidationError, WalletExistsError, WalletNotFoundError
from .ledger import CouponLedger, ReconciliationReport, Reconciler
from .logging import LogContext, get_logger
from .registry import MerchantRegistry
from .storage import StateStore
from .wallet import RecoveryProof, WalletDirectory

logger = get_logger(__name__)


class CouponService:
    """All protocol components behind one object."""

    def __init__(
        self,
        config: Optional[CouponConfig] = None,
        store: Optional[StateStore] = None,
        notifier: Optional[NotificationSink] = None,
        verifier: Optional[ProofVerifier] = None,
        clock: Callable[[], float] = time.time,
        reconcile_interval: float = 60.0,
    ):
        self.config = config or CouponConfig()
        self.config.validate()
        self.clock = clock

        self.store = store or StateStore(lock_timeout=self.config.lock_timeout)
        self.notifier = notifier if notifier is not None else InMemoryNotificationSink()
        self.verifier = verifier or ProofVerifier(ZKPConfig())

        self.registry = MerchantRegistry(self.store, clock=clock)
        self.gateway = ConfirmationGateway(
            self.store, config=self.config, clock=clock, notifier=self.notifier
        )
        self.directory = WalletDirectory(self.store, verifier=self.verifier, clock=clock)
        self.ledger = CouponLedger(
            self.store,
            self.registry,
            self.gateway,
            self.directory,
            verifier=self.verifier,
            clock=clock,
        )
        self.reconciler = Reconciler(self.ledger, self.gateway, interval=reconcile_interval)

    # Identity service

    def identity_commitment(self, email: str) -> str:
        """Identity commitment for an email under the configured domain."""
        return identity_commitment(email, domain=self.config.identity_domain)

    def create_wallet(self, identity_commitment: str, recovery_commitment: str) -> str:
        return self.directory.create_wallet(identity_commitment, recovery_commitment)

    def get_wallet_address(self, identity_commitment: str) -> Optional[str]:
        return self.directory.get_wallet_address(identity_commitment)

    def get_wallet(self, address: str) -> Wallet:
        return self.directory.get_wallet(address)

    def recover_wallet(
        self, address: str, new_identity_commitment: str, recovery_proof: RecoveryProof
    ) -> Wallet:
        return self.directory.recover_wallet(address, new_identity_commitment, recovery_proof)

    # Confirmation-gated flows

    def begin_registration(
        self, identity_commitment: str, recovery_commitment: str, ttl: Optional[float] = None
    ) -> ConfirmationToken:
        """Issue a Register token for the wallet this commitment will own."""
        if not is_commitment(identity_commitment):
            raise ValidationError(
                "identity_commitment must be 64 lowercase hex characters",
                field="identity_commitment",
            )
        if not is_commitment(recovery_commitment):
            raise ValidationError(
                "recovery_commitment must be 64 lowercase hex characters",
                field="recovery_commitment",
            )
        address = derive_wallet_address(identity_commitment)
        if self._wallet_exists(address):
            raise WalletExistsError(f"Wallet {address} already exists")
        return self.gateway.issue(
            ConfirmationAction.REGISTER,
            address,
            payload={
                "identity_commitment": identity_commitment,
                "recovery_commitment": recovery_commitment,
            },
            ttl=ttl,
        )

    def complete_registration(self, token: str, identity_commitment: str) -> str:
        """Create the wallet once its owner confirmed the Register token."""
        if not is_commitment(identity_commitment):
            raise ValidationError(
                "identity_commitment must be 64 lowercase hex characters",
                field="identity_commitment",
            )
        reservation = self.gateway.reserve(
            token,
            ConfirmationAction.REGISTER,
            derive_wallet_address(identity_commitment),
            payload_match={"identity_commitment": identity_commitment},
        )
        return self._within_reservation(
            reservation,
            lambda: self.directory.create_wallet(
                identity_commitment, reservation.payload["recovery_commitment"]
            ),
        )

    def begin_login(self, identity_commitment: str, ttl: Optional[float] = None) -> ConfirmationToken:
        """Issue a Login token for the wallet currently bound to the commitment."""
        address = self._require_address(identity_commitment)
        return self.gateway.issue(
            ConfirmationAction.LOGIN,
            address,
            payload={"identity_commitment": identity_commitment},
            ttl=ttl,
        )

    def complete_login(self, token: str, identity_commitment: str) -> Wallet:
        """Consume a Login token. Fails once the commitment has been retired by recovery."""
        address = self._require_address(identity_commitment)
        reservation = self.gateway.reserve(
            token,
            ConfirmationAction.LOGIN,
            address,
            payload_match={"identity_commitment": identity_commitment},
        )
        return self._within_reservation(reservation, lambda: self._login(reservation, identity_commitment))

    def begin_recovery(
        self, address: str, new_identity_commitment: str, ttl: Optional[float] = None
    ) -> ConfirmationToken:
        """Issue a Recover token; it is delivered to the new identity."""
        if not is_commitment(new_identity_commitment):
            raise ValidationError(
                "new_identity_commitment must be 64 lowercase hex characters",
                field="new_identity_commitment",
            )
        self.directory.get_wallet(address)
        return self.gateway.issue(
            ConfirmationAction.RECOVER,
            address,
            payload={"new_identity_commitment": new_identity_commitment},
            ttl=ttl,
        )

    def complete_recovery(
        self,
        token: str,
        address: str,
        new_identity_commitment: str,
        recovery_proof: RecoveryProof,
    ) -> Wallet:
        reservation = self.gateway.reserve(
            token,
            ConfirmationAction.RECOVER,
            address,
            payload_match={"new_identity_commitment": new_identity_commitment},
        )
        return self._within_reservation(
            reservation,
            lambda: self.directory.recover_wallet(address, new_identity_commitment, recovery_proof),
        )

    # Merchant tooling

    def register_merchant(
        self, wallet_address: str, name: str = "", merchant_id: Optional[str] = None
    ) -> Merchant:
        return self.registry.register_merchant(wallet_address, name=name, merchant_id=merchant_id)

    def update_merchant_details(
        self,
        caller: CallerContext,
        merchant_id: str,
        wallet_address: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Merchant:
        return self.registry.update_merchant_details(
            caller, merchant_id, wallet_address=wallet_address, name=name
        )

    def deactivate_merchant(self, caller: CallerContext, merchant_id: str) -> Merchant:
        return self.registry.deactivate_merchant(caller, merchant_id)

    def create_program(
        self,
        caller: CallerContext,
        merchant_id: str,
        validity_period: float,
        max_issuance: int,
        verification_key: Optional[VerificationKey] = None,
        name: str = "",
    ) -> Program:
        return self.registry.create_program(
            caller,
            merchant_id,
            validity_period,
            max_issuance,
            verification_key=verification_key,
            name=name,
        )

    def register_verification_key(
        self, caller: CallerContext, program_id: str, verification_key: VerificationKey
    ) -> Program:
        return self.registry.register_verification_key(caller, program_id, verification_key)

    def issue(
        self,
        program_id: str,
        owner_wallet: str,
        metadata_commitment: str,
        issuance_proof: Proof,
        public_inputs: PublicInputs,
    ) -> Coupon:
        return self.ledger.issue(
            program_id, owner_wallet, metadata_commitment, issuance_proof, public_inputs
        )

    def initiate_redemption(
        self, caller: CallerContext, token_id: str, ttl: Optional[float] = None
    ) -> ConfirmationToken:
        return self.ledger.initiate_redemption(caller, token_id, ttl=ttl)

    def redeem(self, token_id: str, redemption_proof: Proof, confirmation_token: str) -> Coupon:
        return self.ledger.redeem(token_id, redemption_proof, confirmation_token)

    # Read surface

    def get_coupon_details(self, token_id: str) -> Coupon:
        return self.ledger.get_coupon_details(token_id)

    def get_user_coupons(self, owner_wallet: str) -> List[Coupon]:
        return self.ledger.get_user_coupons(owner_wallet)

    def get_merchant_coupons(self, merchant_id: str) -> List[Coupon]:
        return self.ledger.get_merchant_coupons(merchant_id)

    def get_program_coupons(self, program_id: str) -> List[Coupon]:
        return self.ledger.get_program_coupons(program_id)

    def is_valid_coupon(self, token_id: str) -> bool:
        return self.ledger.is_valid(token_id)

    def get_merchant(self, merchant_id: str) -> Merchant:
        return self.registry.get_merchant(merchant_id)

    def list_merchants(self, active_only: bool = False) -> List[Merchant]:
        return self.registry.list_merchants(active_only=active_only)

    def get_program(self, program_id: str) -> Program:
        return self.registry.get_program(program_id)

    def list_programs(self, merchant_id: Optional[str] = None) -> List[Program]:
        return self.registry.list_programs(merchant_id)

    # Maintenance

    def reconcile(self) -> ReconciliationReport:
        return self.reconciler.run_once()

    def get_stats(self) -> Dict[str, Any]:
        return self.store.get_stats()

    def _wallet_exists(self, address: str) -> bool:
        try:
            self.directory.get_wallet(address)
        except WalletNotFoundError:
            return False
        return True

    def _require_address(self, identity_commitment: str) -> str:
        address = self.directory.get_wallet_address(identity_commitment)
        if address is None:
            raise WalletNotFoundError(
                "No wallet is bound to this identity commitment",
                field="identity_commitment",
            )
        return address

    def _login(self, reservation: Reservation, identity_commitment: str) -> Wallet:
        # The commitment may have been retired between reserve and now.
        if self.directory.get_wallet_address(identity_commitment) != reservation.target_wallet:
            raise WalletNotFoundError(
                "No wallet is bound to this identity commitment",
                field="identity_commitment",
            )
        wallet = self.directory.get_wallet(reservation.target_wallet)
        logger.info(
            "Wallet login confirmed",
            context=LogContext(component="service", wallet=wallet.address),
        )
        return wallet

    def _within_reservation(self, reservation: Reservation, action: Callable[[], Any]) -> Any:
        """Run ``action``; spend the token on success, hand it back on failure."""
        try:
            result = action()
        except Exception:
            self.gateway.release(reservation)
            raise
        self.gateway.finalize(reservation)
        return result
