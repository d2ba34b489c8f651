"""
Records of the coupon protocol.

All records are frozen dataclasses; a state change produces a new record via
``dataclasses.replace`` and is written back through a store transaction.
"""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from ..errors import InvalidStateTransitionError


class CouponState(Enum):
    """Lifecycle states of a coupon."""

    ISSUED = "issued"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    # Only ever describes a rejected issuance attempt; never persisted.
    INVALID = "invalid"


COUPON_TRANSITIONS: Mapping[CouponState, FrozenSet[CouponState]] = {
    CouponState.ISSUED: frozenset({CouponState.REDEEMED, CouponState.EXPIRED}),
    CouponState.REDEEMED: frozenset(),
    CouponState.EXPIRED: frozenset(),
    CouponState.INVALID: frozenset(),
}


class ConfirmationAction(Enum):
    """Actions a confirmation token can authorize."""

    REGISTER = "register"
    LOGIN = "login"
    REDEEM = "redeem"
    RECOVER = "recover"


class TokenStatus(Enum):
    """Derived status of a confirmation token."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"


def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class Merchant:
    """A merchant. Deactivated, never deleted."""

    merchant_id: str
    wallet_address: str
    created_at: float
    name: str = ""
    active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "merchant_id": self.merchant_id,
            "wallet_address": self.wallet_address,
            "name": self.name,
            "active": self.active,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class Program:
    """A coupon program owned by one merchant."""

    program_id: str
    merchant_id: str
    validity_period: float
    max_issuance: int
    created_at: float
    issued_count: int = 0
    key_version: int = 0
    name: str = ""

    @property
    def remaining(self) -> int:
        return self.max_issuance - self.issued_count

    @property
    def has_capacity(self) -> bool:
        return self.issued_count < self.max_issuance

    def with_issued(self) -> "Program":
        """The program after one more coupon has been minted."""
        if not self.has_capacity:
            raise ValueError("issuance cap already reached")
        return replace(self, issued_count=self.issued_count + 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "program_id": self.program_id,
            "merchant_id": self.merchant_id,
            "name": self.name,
            "validity_period": self.validity_period,
            "max_issuance": self.max_issuance,
            "issued_count": self.issued_count,
            "key_version": self.key_version,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class Coupon:
    """A single-use coupon bound to one wallet."""

    token_id: str
    merchant_id: str
    program_id: str
    owner_wallet: str
    metadata_commitment: str
    issued_at: float
    expiry_date: float
    key_version: int
    state: CouponState = CouponState.ISSUED
    redeemed_at: Optional[float] = None
    expired_at: Optional[float] = None

    def is_valid(self, now: float) -> bool:
        """Computed from the clock, never from a stored expiry flag alone."""
        return self.state == CouponState.ISSUED and now < self.expiry_date

    def is_overdue(self, now: float) -> bool:
        """Issued in storage but past its expiry date."""
        return self.state == CouponState.ISSUED and now >= self.expiry_date

    def effective_state(self, now: float) -> CouponState:
        if self.is_overdue(now):
            return CouponState.EXPIRED
        return self.state

    def transition(self, target: CouponState, at: float) -> "Coupon":
        """Return the coupon moved to ``target``; only forward edges are allowed."""
        if target not in COUPON_TRANSITIONS[self.state]:
            raise InvalidStateTransitionError(
                f"Coupon {self.token_id} cannot move from {self.state.value} to {target.value}",
                metadata={"from": self.state.value, "to": target.value},
            )
        if target == CouponState.REDEEMED:
            return replace(self, state=target, redeemed_at=at)
        return replace(self, state=target, expired_at=at)

    def to_dict(self, now: Optional[float] = None) -> Dict[str, Any]:
        data = {
            "token_id": self.token_id,
            "merchant_id": self.merchant_id,
            "program_id": self.program_id,
            "owner_wallet": self.owner_wallet,
            "metadata_commitment": self.metadata_commitment,
            "issued_at": self.issued_at,
            "expiry_date": self.expiry_date,
            "key_version": self.key_version,
            "state": self.state.value,
            "redeemed_at": self.redeemed_at,
            "expired_at": self.expired_at,
        }
        if now is not None:
            data["effective_state"] = self.effective_state(now).value
            data["valid"] = self.is_valid(now)
        return data


@dataclass(frozen=True)
class Wallet:
    """A custodial-free wallet addressed by an identity commitment."""

    address: str
    identity_commitment: str
    recovery_commitment: str
    created_at: float
    recovered_at: Optional[float] = None
    recovery_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        # The identity commitment is never echoed back to callers.
        return {
            "address": self.address,
            "created_at": self.created_at,
            "recovered_at": self.recovered_at,
            "recovery_count": self.recovery_count,
        }


@dataclass(frozen=True)
class ConfirmationToken:
    """Single-use, time-limited capability for one pending action."""

    token: str
    action: ConfirmationAction
    target_wallet: str
    issued_at: float
    expires_at: float
    payload: Mapping[str, Any] = field(default_factory=dict)
    used: bool = False
    used_at: Optional[float] = None
    reservation_id: Optional[str] = None
    reserved_until: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def is_reserved(self, now: float) -> bool:
        return self.reservation_id is not None and (
            self.reserved_until is None or now <= self.reserved_until
        )

    def status(self, now: float) -> TokenStatus:
        if self.used:
            return TokenStatus.CONFIRMED
        if self.is_expired(now):
            return TokenStatus.EXPIRED
        return TokenStatus.PENDING

    def to_dict(self, now: Optional[float] = None) -> Dict[str, Any]:
        data = {
            "action": self.action.value,
            "target_wallet": self.target_wallet,
            "payload": dict(self.payload),
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "used": self.used,
        }
        if now is not None:
            data["status"] = self.status(now).value
        return data
