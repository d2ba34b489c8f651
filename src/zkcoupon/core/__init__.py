"""Core records, caller context and events of the coupon protocol."""

from .context import CallerContext
from .events import (
    CallbackNotificationSink,
    InMemoryNotificationSink,
    NotificationSink,
    TokenIssuedEvent,
)
from .models import (
    COUPON_TRANSITIONS,
    ConfirmationAction,
    ConfirmationToken,
    Coupon,
    CouponState,
    Merchant,
    Program,
    TokenStatus,
    Wallet,
    generate_id,
)

__all__ = [
    # Records
    "Merchant",
    "Program",
    "Coupon",
    "CouponState",
    "COUPON_TRANSITIONS",
    "Wallet",
    "ConfirmationToken",
    "ConfirmationAction",
    "TokenStatus",
    "generate_id",
    # Context
    "CallerContext",
    # Events
    "TokenIssuedEvent",
    "NotificationSink",
    "InMemoryNotificationSink",
    "CallbackNotificationSink",
]
