"""
Coupon ledger.

Owns coupon records and enforces the lifecycle ``Issued -> {Redeemed,
Expired}``. Two transitions span several entities and run as one
transaction each:

* issuance checks and increments the program's issuance cap, mints the
  coupon and records the request for idempotent retries;
* redemption holds the coupon, reserves the confirmation token in the
  gateway, moves the coupon to ``Redeemed`` and finalizes the token. Either
  both the token and the coupon change, or neither does.

Expiry is lazy: validity is computed from the clock on every read, and the
``Expired`` state is written only when an operation observes an overdue
coupon or ``expire_overdue`` sweeps them.
"""

import time
from typing import Callable, List, Optional

from ..confirmation import ConfirmationGateway
from ..core.context import CallerContext
from ..core.models import ConfirmationAction, ConfirmationToken, Coupon, CouponState, generate_id
from ..crypto.commitments import is_address, is_commitment
from ..crypto.hashing import SHA256Hasher
from ..crypto.zkp import IssuanceInputs, Proof, ProofVerifier, PublicInputs, RedemptionInputs
from ..errors import (
    CouponAlreadyRedeemedError,
    CouponExpiredError,
    CouponNotFoundError,
    InvalidProofError,
    IssuanceCapReachedError,
    MerchantInactiveError,
    ProgramNotFoundError,
    ValidationError,
)
from ..logging import LogContext, get_logger
from ..registry import MerchantRegistry, key_slot
from ..storage import StateStore, Table
from ..wallet import WalletDirectory

logger = get_logger(__name__)

ISSUANCE_REQUEST_DOMAIN = "zkcoupon/issuance-request/v1"


def issuance_request_id(
    program_id: str, owner_wallet: str, metadata_commitment: str, proof: Proof
) -> str:
    """Identifier of one issuance request, used to recognize retries."""
    return SHA256Hasher.hash_fields(
        ISSUANCE_REQUEST_DOMAIN,
        [program_id, owner_wallet, metadata_commitment, proof.get_hash()],
    ).to_hex()


class CouponLedger:
    """Issuance, validity and redemption of coupons."""

    def __init__(
        self,
        store: StateStore,
        registry: MerchantRegistry,
        gateway: ConfirmationGateway,
        directory: WalletDirectory,
        verifier: Optional[ProofVerifier] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.registry = registry
        self.gateway = gateway
        self.directory = directory
        self.verifier = verifier or ProofVerifier()
        self.clock = clock

    def issue(
        self,
        program_id: str,
        owner_wallet: str,
        metadata_commitment: str,
        issuance_proof: Proof,
        public_inputs: PublicInputs,
    ) -> Coupon:
        """Mint a coupon under ``program_id`` for ``owner_wallet``.

        Retrying with identical arguments returns the coupon minted by the
        first call.
        """
        if not is_address(owner_wallet):
            raise ValidationError("Invalid owner wallet", field="owner_wallet", value=owner_wallet)
        if not is_commitment(metadata_commitment):
            raise ValidationError(
                "metadata_commitment must be 64 lowercase hex characters",
                field="metadata_commitment",
            )
        if not isinstance(issuance_proof, Proof):
            raise InvalidProofError()

        program = self.registry.get_program(program_id)
        self.directory.get_wallet(owner_wallet)

        request_id = issuance_request_id(
            program_id, owner_wallet, metadata_commitment, issuance_proof
        )
        token_id = generate_id("cpn")
        keys = [
            (Table.MERCHANTS, program.merchant_id),
            (Table.PROGRAMS, program_id),
            (Table.ISSUANCES, request_id),
            (Table.COUPONS, token_id),
        ]
        ctx = LogContext(component="ledger", merchant_id=program.merchant_id, wallet=owner_wallet)

        with self.store.transaction(keys) as txn:
            # A retry observes the first outcome even if the merchant has
            # since been deactivated or the cap reached.
            previous = txn.get(Table.ISSUANCES, request_id)
            if previous is not None:
                logger.info("Issuance retry returned existing coupon", context=ctx)
                return txn.get(Table.COUPONS, previous)

            program = txn.get(Table.PROGRAMS, program_id)
            if program is None:
                raise ProgramNotFoundError(
                    f"Program {program_id} not found", field="program_id", value=program_id
                )
            merchant = txn.get(Table.MERCHANTS, program.merchant_id)
            if merchant is None or not merchant.active:
                raise MerchantInactiveError(
                    f"Merchant {program.merchant_id} is missing or inactive",
                    field="merchant_id",
                    value=program.merchant_id,
                )

            if not program.has_capacity:
                logger.warning(
                    "Issuance cap reached",
                    context=ctx,
                    extra={"program_id": program_id, "max_issuance": program.max_issuance},
                )
                raise IssuanceCapReachedError(
                    f"Program {program_id} has issued all {program.max_issuance} coupons"
                )

            expected = IssuanceInputs(
                program_id=program_id,
                owner_wallet=owner_wallet,
                metadata_commitment=metadata_commitment,
                key_version=program.key_version,
            )
            if public_inputs != expected:
                logger.debug("Issuance public inputs do not match the request", context=ctx)
                raise InvalidProofError()
            key = (
                txn.get(Table.VERIFICATION_KEYS, key_slot(program_id, program.key_version))
                if program.key_version > 0
                else None
            )
            self.verifier.require(issuance_proof, expected, key)

            now = self.clock()
            coupon = Coupon(
                token_id=token_id,
                merchant_id=program.merchant_id,
                program_id=program_id,
                owner_wallet=owner_wallet,
                metadata_commitment=metadata_commitment,
                issued_at=now,
                expiry_date=now + program.validity_period,
                key_version=program.key_version,
            )
            txn.put(Table.PROGRAMS, program_id, program.with_issued())
            txn.insert(Table.COUPONS, token_id, coupon)
            txn.insert(Table.ISSUANCES, request_id, token_id)

        logger.info(
            "Issued coupon",
            context=ctx,
            extra={"token_id": token_id, "program_id": program_id},
        )
        return coupon

    def is_valid(self, token_id: str) -> bool:
        """True iff the coupon exists, is Issued and not past its expiry date."""
        coupon = self.store.get(Table.COUPONS, token_id)
        return coupon is not None and coupon.is_valid(self.clock())

    def initiate_redemption(
        self, caller: CallerContext, token_id: str, ttl: Optional[float] = None
    ) -> ConfirmationToken:
        """Ask the coupon owner to confirm a redemption. Merchant only."""
        coupon = self.get_coupon_details(token_id)
        caller.require_merchant(coupon.merchant_id)
        self._require_redeemable(coupon, self.clock())

        return self.gateway.issue(
            ConfirmationAction.REDEEM,
            coupon.owner_wallet,
            payload={"token_id": token_id, "merchant_id": coupon.merchant_id},
            ttl=ttl,
        )

    def redeem(
        self,
        token_id: str,
        redemption_proof: Proof,
        confirmation_token: str,
    ) -> Coupon:
        """Redeem a coupon with the owner's proof and confirmation token."""
        expired: Optional[Coupon] = None
        ctx = LogContext(component="ledger")

        with self.store.transaction([(Table.COUPONS, token_id)]) as txn:
            coupon = self._require_coupon(txn.get(Table.COUPONS, token_id), token_id)
            ctx = LogContext(
                component="ledger", merchant_id=coupon.merchant_id, wallet=coupon.owner_wallet
            )
            now = self.clock()

            if coupon.is_overdue(now):
                expired = coupon.transition(CouponState.EXPIRED, now)
                txn.put(Table.COUPONS, token_id, expired)
            else:
                self._require_redeemable(coupon, now)

                inputs = RedemptionInputs(
                    token_id=token_id,
                    owner_wallet=coupon.owner_wallet,
                    key_version=coupon.key_version,
                )
                key = self.registry.get_verification_key(coupon.program_id, coupon.key_version)
                self.verifier.require(redemption_proof, inputs, key)

                reservation = self.gateway.reserve(
                    confirmation_token,
                    ConfirmationAction.REDEEM,
                    coupon.owner_wallet,
                    payload_match={"token_id": token_id},
                )
                try:
                    redeemed = coupon.transition(CouponState.REDEEMED, now)
                    txn.put(Table.COUPONS, token_id, redeemed)
                except Exception:
                    self.gateway.release(reservation)
                    raise
                self.gateway.finalize(reservation)

        if expired is not None:
            logger.info(
                "Coupon expired on redemption attempt",
                context=ctx,
                extra={"token_id": token_id},
            )
            raise CouponExpiredError(f"Coupon {token_id} expired")

        logger.info("Redeemed coupon", context=ctx, extra={"token_id": token_id})
        return redeemed

    def expire_overdue(self) -> int:
        """Materialize ``Expired`` for every overdue coupon. Returns the count."""
        now = self.clock()
        overdue = self.store.scan(Table.COUPONS, lambda c: c.is_overdue(now))
        expired = 0
        for candidate in overdue:
            with self.store.transaction([(Table.COUPONS, candidate.token_id)]) as txn:
                coupon = txn.get(Table.COUPONS, candidate.token_id)
                if coupon is None or not coupon.is_overdue(now):
                    continue
                txn.put(
                    Table.COUPONS,
                    coupon.token_id,
                    coupon.transition(CouponState.EXPIRED, now),
                )
                expired += 1

        if expired:
            logger.info(
                "Expired overdue coupons",
                context=LogContext(component="ledger"),
                extra={"count": expired},
            )
        return expired

    # Read surface

    def get_coupon_details(self, token_id: str) -> Coupon:
        return self._require_coupon(self.store.get(Table.COUPONS, token_id), token_id)

    def get_user_coupons(self, owner_wallet: str) -> List[Coupon]:
        return self._sorted(self.store.scan(Table.COUPONS, lambda c: c.owner_wallet == owner_wallet))

    def get_merchant_coupons(self, merchant_id: str) -> List[Coupon]:
        return self._sorted(self.store.scan(Table.COUPONS, lambda c: c.merchant_id == merchant_id))

    def get_program_coupons(self, program_id: str) -> List[Coupon]:
        return self._sorted(self.store.scan(Table.COUPONS, lambda c: c.program_id == program_id))

    @staticmethod
    def _sorted(coupons: List[Coupon]) -> List[Coupon]:
        return sorted(coupons, key=lambda c: (c.issued_at, c.token_id))

    @staticmethod
    def _require_coupon(coupon: Optional[Coupon], token_id: str) -> Coupon:
        if coupon is None:
            raise CouponNotFoundError(
                f"Coupon {token_id} not found", field="token_id", value=token_id
            )
        return coupon

    @staticmethod
    def _require_redeemable(coupon: Coupon, now: float) -> None:
        if coupon.state == CouponState.REDEEMED:
            raise CouponAlreadyRedeemedError(f"Coupon {coupon.token_id} was already redeemed")
        if not coupon.is_valid(now):
            raise CouponExpiredError(f"Coupon {coupon.token_id} expired")
