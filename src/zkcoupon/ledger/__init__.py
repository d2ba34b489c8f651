"""Coupon ledger and its reconciliation sweep."""

from .coupon_ledger import CouponLedger, issuance_request_id
from .reconciliation import ReconciliationReport, Reconciler

__all__ = [
    "CouponLedger",
    "issuance_request_id",
    "Reconciler",
    "ReconciliationReport",
]
