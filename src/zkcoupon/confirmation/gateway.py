"""
Confirmation gateway.

Issues and consumes single-use, time-limited confirmation tokens that bind a
pending action to a wallet and a payload. Per token the lifecycle is
``Pending -> Confirmed`` or ``Pending -> Expired``; the status is derived
from ``used`` and the clock, so observing expiry is idempotent and writes
nothing.

Two ways to consume a token:

* ``confirm`` checks and consumes in one atomic step.
* ``reserve`` / ``finalize`` / ``release`` split consumption in two phases
  for callers that must make a second write (the coupon transition) before
  the token is spent. A reserved token counts as used for everyone else.
  ``reconcile`` releases reservations whose holder never came back.
"""

import secrets
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Mapping, Optional

from ..config import CouponConfig
from ..core.events import NotificationSink, TokenIssuedEvent
from ..core.models import ConfirmationAction, ConfirmationToken, TokenStatus, generate_id
from ..crypto.commitments import is_address
from ..errors import (
    ReservationLostError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenMismatchError,
    TokenNotFoundError,
    ValidationError,
)
from ..logging import LogContext, get_logger
from ..storage import StateStore, Table

logger = get_logger(__name__)


@dataclass(frozen=True)
class Reservation:
    """Claim on a token between ``reserve`` and ``finalize``/``release``."""

    reservation_id: str
    token: str
    action: ConfirmationAction
    target_wallet: str
    reserved_until: float
    payload: Mapping[str, Any] = field(default_factory=dict)


class ConfirmationGateway:
    """Issues and consumes confirmation tokens."""

    def __init__(
        self,
        store: StateStore,
        config: Optional[CouponConfig] = None,
        clock: Callable[[], float] = time.time,
        notifier: Optional[NotificationSink] = None,
    ):
        self.store = store
        self.config = config or CouponConfig()
        self.clock = clock
        self.notifier = notifier

    def issue(
        self,
        action: ConfirmationAction,
        target_wallet: str,
        payload: Optional[Dict[str, Any]] = None,
        ttl: Optional[float] = None,
    ) -> ConfirmationToken:
        """Mint a fresh token. Earlier tokens for the same action stay independent."""
        if not isinstance(action, ConfirmationAction):
            raise ValidationError("Unknown confirmation action", field="action", value=action)
        if not is_address(target_wallet):
            raise ValidationError(
                "Invalid target wallet", field="target_wallet", value=target_wallet
            )
        ttl = self.config.confirmation_ttl if ttl is None else ttl
        if ttl <= 0 or ttl > self.config.max_confirmation_ttl:
            raise ValidationError(
                f"ttl must be in (0, {self.config.max_confirmation_ttl}]",
                field="ttl",
                value=ttl,
            )

        now = self.clock()
        value = secrets.token_urlsafe(self.config.token_bytes)
        token = ConfirmationToken(
            token=value,
            action=action,
            target_wallet=target_wallet,
            issued_at=now,
            expires_at=now + ttl,
            payload=dict(payload or {}),
        )
        with self.store.transaction([(Table.TOKENS, value)]) as txn:
            txn.insert(Table.TOKENS, value, token)

        logger.info(
            "Issued confirmation token",
            context=LogContext(component="confirmation", wallet=target_wallet),
            extra={"action": action.value, "expires_at": token.expires_at},
        )
        if self.notifier is not None:
            self.notifier.publish(TokenIssuedEvent.from_token(token))
        return token

    def confirm(self, token: str) -> ConfirmationToken:
        """Consume a token and return it, with its bound action and payload."""
        with self.store.transaction([(Table.TOKENS, token)]) as txn:
            now = self.clock()
            record = self._check_usable(txn.get(Table.TOKENS, token), now)
            consumed = replace(
                record, used=True, used_at=now, reservation_id=None, reserved_until=None
            )
            txn.put(Table.TOKENS, token, consumed)

        logger.info(
            "Confirmed token",
            context=LogContext(component="confirmation", wallet=consumed.target_wallet),
            extra={"action": consumed.action.value},
        )
        return consumed

    def reserve(
        self,
        token: str,
        action: ConfirmationAction,
        target_wallet: str,
        payload_match: Optional[Mapping[str, Any]] = None,
    ) -> Reservation:
        """Claim a token for ``action`` on ``target_wallet`` without spending it yet.

        Every key in ``payload_match`` must be present in the token payload
        with an equal value.
        """
        with self.store.transaction([(Table.TOKENS, token)]) as txn:
            now = self.clock()
            record = self._check_usable(txn.get(Table.TOKENS, token), now)
            if record.action != action or record.target_wallet != target_wallet:
                raise TokenMismatchError(
                    "Token does not authorize this action for this wallet",
                    field="token",
                )
            for key, expected in (payload_match or {}).items():
                if record.payload.get(key) != expected:
                    raise TokenMismatchError(
                        "Token payload does not match this action", field=key
                    )

            reservation = Reservation(
                reservation_id=generate_id("rsv"),
                token=token,
                action=record.action,
                target_wallet=record.target_wallet,
                reserved_until=now + self.config.reservation_timeout,
                payload=dict(record.payload),
            )
            txn.put(
                Table.TOKENS,
                token,
                replace(
                    record,
                    reservation_id=reservation.reservation_id,
                    reserved_until=reservation.reserved_until,
                ),
            )

        logger.debug(
            "Reserved token",
            context=LogContext(component="confirmation", wallet=target_wallet),
            extra={"reservation_id": reservation.reservation_id},
        )
        return reservation

    def finalize(self, reservation: Reservation) -> ConfirmationToken:
        """Spend a reserved token."""
        with self.store.transaction([(Table.TOKENS, reservation.token)]) as txn:
            record = self._require_reservation(txn.get(Table.TOKENS, reservation.token), reservation)
            consumed = replace(
                record,
                used=True,
                used_at=self.clock(),
                reservation_id=None,
                reserved_until=None,
            )
            txn.put(Table.TOKENS, reservation.token, consumed)

        logger.info(
            "Confirmed token",
            context=LogContext(component="confirmation", wallet=consumed.target_wallet),
            extra={"action": consumed.action.value, "reservation_id": reservation.reservation_id},
        )
        return consumed

    def release(self, reservation: Reservation) -> None:
        """Roll a reservation back, leaving the token usable."""
        with self.store.transaction([(Table.TOKENS, reservation.token)]) as txn:
            record = self._require_reservation(txn.get(Table.TOKENS, reservation.token), reservation)
            txn.put(
                Table.TOKENS,
                reservation.token,
                replace(record, reservation_id=None, reserved_until=None),
            )

        logger.debug(
            "Released token reservation",
            context=LogContext(component="confirmation", wallet=reservation.target_wallet),
            extra={"reservation_id": reservation.reservation_id},
        )

    def reconcile(self) -> int:
        """Release every reservation past its deadline. Returns how many were released."""
        now = self.clock()
        stale = self.store.scan(
            Table.TOKENS,
            lambda t: not t.used
            and t.reservation_id is not None
            and t.reserved_until is not None
            and t.reserved_until < now,
        )
        released = 0
        for candidate in stale:
            with self.store.transaction([(Table.TOKENS, candidate.token)]) as txn:
                record = txn.get(Table.TOKENS, candidate.token)
                # Re-check under the lock; the holder may have finalized meanwhile.
                if (
                    record is None
                    or record.used
                    or record.reservation_id != candidate.reservation_id
                ):
                    continue
                txn.put(
                    Table.TOKENS,
                    candidate.token,
                    replace(record, reservation_id=None, reserved_until=None),
                )
                released += 1

        if released:
            logger.warning(
                "Released stale token reservations",
                context=LogContext(component="confirmation"),
                extra={"count": released},
            )
        return released

    def get_token(self, token: str) -> Optional[ConfirmationToken]:
        return self.store.get(Table.TOKENS, token)

    def status(self, token: str) -> TokenStatus:
        record = self.get_token(token)
        if record is None:
            raise TokenNotFoundError("Unknown confirmation token", field="token")
        return record.status(self.clock())

    def _check_usable(
        self, record: Optional[ConfirmationToken], now: float
    ) -> ConfirmationToken:
        """Return the token if it can still be consumed.

        Checks run not-found, expired, used. A token that was used and has
        since passed ``expires_at`` reports TokenAlreadyUsed: ``Confirmed``
        is terminal and never turns into ``Expired``.
        """
        if record is None:
            raise TokenNotFoundError("Unknown confirmation token", field="token")
        if record.is_expired(now) and not record.used:
            raise TokenExpiredError("Confirmation token has expired")
        if record.used or record.is_reserved(now):
            raise TokenAlreadyUsedError("Confirmation token was already used")
        return record

    @staticmethod
    def _require_reservation(
        record: Optional[ConfirmationToken], reservation: Reservation
    ) -> ConfirmationToken:
        if (
            record is None
            or record.used
            or record.reservation_id != reservation.reservation_id
        ):
            raise ReservationLostError(
                f"Reservation {reservation.reservation_id} no longer holds its token"
            )
        return record
