"""
zkcoupon: zero-knowledge coupon issuance and redemption.

Merchants issue single-use coupons to custodial-free wallets. Users prove
purchase eligibility with zero-knowledge proofs, and every redemption needs
the wallet owner's out-of-band confirmation.

Components:
- Proof verifier (``zkcoupon.crypto.zkp``)
- Merchant/program registry (``zkcoupon.registry``)
- Confirmation gateway (``zkcoupon.confirmation``)
- Wallet directory (``zkcoupon.wallet``)
- Coupon ledger (``zkcoupon.ledger``)
"""

__version__ = "0.1.0"

from .config import CouponConfig
from .core import (
    CallerContext,
    ConfirmationAction,
    ConfirmationToken,
    Coupon,
    CouponState,
    InMemoryNotificationSink,
    Merchant,
    Program,
    TokenIssuedEvent,
    Wallet,
)
from .errors import CouponError
from .service import CouponService

__all__ = [
    "__version__",
    "CouponConfig",
    "CouponService",
    "CouponError",
    "CallerContext",
    "ConfirmationAction",
    "ConfirmationToken",
    "Coupon",
    "CouponState",
    "Merchant",
    "Program",
    "Wallet",
    "TokenIssuedEvent",
    "InMemoryNotificationSink",
]
