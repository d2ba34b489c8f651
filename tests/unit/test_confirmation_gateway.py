"""
Unit tests for the confirmation gateway.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from zkcoupon import CouponConfig
from zkcoupon.confirmation import ConfirmationGateway
from zkcoupon.core import ConfirmationAction, InMemoryNotificationSink, TokenStatus
from zkcoupon.errors import (
    ReservationLostError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenMismatchError,
    TokenNotFoundError,
    ValidationError,
)

from conftest import ManualClock

WALLET = "0x" + "11" * 20
OTHER_WALLET = "0x" + "22" * 20


@pytest.fixture
def gateway(store, notifier, clock):
    config = CouponConfig(confirmation_ttl=300.0, reservation_timeout=30.0)
    return ConfirmationGateway(store, config=config, clock=clock, notifier=notifier)


class TestIssue:
    """Test token issuance."""

    def test_issue(self, gateway, notifier, clock):
        token = gateway.issue(ConfirmationAction.LOGIN, WALLET, payload={"k": "v"})

        assert token.target_wallet == WALLET
        assert token.expires_at == clock() + 300.0
        assert token.payload == {"k": "v"}
        assert len(token.token) >= 32
        assert gateway.status(token.token) == TokenStatus.PENDING

        event = notifier.latest()
        assert event.token == token.token
        assert event.action == ConfirmationAction.LOGIN

    def test_issue_custom_ttl(self, gateway, clock):
        token = gateway.issue(ConfirmationAction.REDEEM, WALLET, ttl=60.0)
        assert token.expires_at == clock() + 60.0

    @pytest.mark.parametrize("ttl", [0, -1.0, 86400.5])
    def test_issue_rejects_ttl(self, gateway, ttl):
        with pytest.raises(ValidationError) as exc_info:
            gateway.issue(ConfirmationAction.LOGIN, WALLET, ttl=ttl)
        assert exc_info.value.field == "ttl"

    def test_issue_rejects_bad_inputs(self, gateway):
        with pytest.raises(ValidationError):
            gateway.issue("login", WALLET)
        with pytest.raises(ValidationError):
            gateway.issue(ConfirmationAction.LOGIN, "alice@example.com")

    def test_tokens_are_independent(self, gateway):
        first = gateway.issue(ConfirmationAction.LOGIN, WALLET)
        second = gateway.issue(ConfirmationAction.LOGIN, WALLET)

        assert first.token != second.token
        gateway.confirm(second.token)
        assert gateway.status(first.token) == TokenStatus.PENDING

    def test_works_without_notifier(self, store, clock):
        gateway = ConfirmationGateway(store, clock=clock)
        token = gateway.issue(ConfirmationAction.LOGIN, WALLET)
        assert gateway.confirm(token.token).used


class TestConfirm:
    """Test one-step confirmation."""

    def test_confirm_once(self, gateway, clock):
        token = gateway.issue(ConfirmationAction.REGISTER, WALLET, payload={"a": 1})
        clock.advance(10)

        confirmed = gateway.confirm(token.token)

        assert confirmed.used
        assert confirmed.used_at == clock()
        assert confirmed.payload == {"a": 1}
        assert gateway.status(token.token) == TokenStatus.CONFIRMED
        with pytest.raises(TokenAlreadyUsedError):
            gateway.confirm(token.token)

    def test_unknown_token(self, gateway):
        with pytest.raises(TokenNotFoundError):
            gateway.confirm("no-such-token")
        with pytest.raises(TokenNotFoundError):
            gateway.status("no-such-token")

    def test_expired_token(self, gateway, clock):
        token = gateway.issue(ConfirmationAction.LOGIN, WALLET)
        clock.advance(300.0)
        assert gateway.status(token.token) == TokenStatus.PENDING
        clock.advance(0.5)

        with pytest.raises(TokenExpiredError):
            gateway.confirm(token.token)
        assert gateway.status(token.token) == TokenStatus.EXPIRED
        # Observing expiry writes nothing; the status stays derived.
        assert gateway.get_token(token.token).used is False

    def test_used_token_past_expiry_reports_used(self, gateway, clock):
        token = gateway.issue(ConfirmationAction.LOGIN, WALLET)
        gateway.confirm(token.token)
        clock.advance(1000)

        with pytest.raises(TokenAlreadyUsedError):
            gateway.confirm(token.token)
        assert gateway.status(token.token) == TokenStatus.CONFIRMED

    def test_concurrent_confirm_single_winner(self, gateway):
        token = gateway.issue(ConfirmationAction.LOGIN, WALLET)
        barrier = threading.Barrier(8)

        def attempt():
            barrier.wait()
            try:
                gateway.confirm(token.token)
                return "ok"
            except TokenAlreadyUsedError:
                return "used"

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(lambda _: attempt(), range(8)))

        assert results.count("ok") == 1
        assert results.count("used") == 7


class TestReservation:
    """Test two-phase consumption."""

    def test_reserve_and_finalize(self, gateway):
        token = gateway.issue(ConfirmationAction.REDEEM, WALLET, payload={"token_id": "cpn_1"})

        reservation = gateway.reserve(
            token.token, ConfirmationAction.REDEEM, WALLET, {"token_id": "cpn_1"}
        )
        assert reservation.payload == {"token_id": "cpn_1"}
        with pytest.raises(TokenAlreadyUsedError):
            gateway.confirm(token.token)

        finalized = gateway.finalize(reservation)
        assert finalized.used
        assert finalized.reservation_id is None
        with pytest.raises(ReservationLostError):
            gateway.finalize(reservation)

    def test_release_makes_token_usable(self, gateway):
        token = gateway.issue(ConfirmationAction.LOGIN, WALLET)
        reservation = gateway.reserve(token.token, ConfirmationAction.LOGIN, WALLET)

        gateway.release(reservation)

        assert gateway.get_token(token.token).reservation_id is None
        assert gateway.confirm(token.token).used
        with pytest.raises(ReservationLostError):
            gateway.release(reservation)

    def test_reserve_mismatch(self, gateway):
        token = gateway.issue(ConfirmationAction.REDEEM, WALLET, payload={"token_id": "cpn_1"})

        with pytest.raises(TokenMismatchError):
            gateway.reserve(token.token, ConfirmationAction.LOGIN, WALLET)
        with pytest.raises(TokenMismatchError):
            gateway.reserve(token.token, ConfirmationAction.REDEEM, OTHER_WALLET)
        with pytest.raises(TokenMismatchError) as exc_info:
            gateway.reserve(
                token.token, ConfirmationAction.REDEEM, WALLET, {"token_id": "cpn_2"}
            )
        assert exc_info.value.field == "token_id"
        # Mismatches leave the token untouched.
        assert gateway.get_token(token.token).reservation_id is None

    def test_reserve_expired(self, gateway, clock):
        token = gateway.issue(ConfirmationAction.LOGIN, WALLET)
        clock.advance(301)
        with pytest.raises(TokenExpiredError):
            gateway.reserve(token.token, ConfirmationAction.LOGIN, WALLET)

    def test_reconcile_releases_lapsed(self, gateway, clock):
        token = gateway.issue(ConfirmationAction.LOGIN, WALLET)
        gateway.reserve(token.token, ConfirmationAction.LOGIN, WALLET)

        assert gateway.reconcile() == 0
        clock.advance(31)
        assert gateway.reconcile() == 1
        assert gateway.reconcile() == 0
        assert gateway.confirm(token.token).used

    def test_reconcile_skips_finalized(self, gateway, clock):
        token = gateway.issue(ConfirmationAction.LOGIN, WALLET)
        reservation = gateway.reserve(token.token, ConfirmationAction.LOGIN, WALLET)
        gateway.finalize(reservation)
        clock.advance(31)

        assert gateway.reconcile() == 0
        assert gateway.status(token.token) == TokenStatus.CONFIRMED

    def test_lapsed_reservation_can_be_retaken(self, gateway, clock):
        token = gateway.issue(ConfirmationAction.LOGIN, WALLET)
        stale = gateway.reserve(token.token, ConfirmationAction.LOGIN, WALLET)
        clock.advance(31)

        fresh = gateway.reserve(token.token, ConfirmationAction.LOGIN, WALLET)

        with pytest.raises(ReservationLostError):
            gateway.finalize(stale)
        assert gateway.finalize(fresh).used

    def test_single_reservation_under_contention(self, store):
        gateway = ConfirmationGateway(store, clock=ManualClock())
        token = gateway.issue(ConfirmationAction.REDEEM, WALLET)
        barrier = threading.Barrier(6)

        def attempt():
            barrier.wait()
            try:
                return gateway.reserve(token.token, ConfirmationAction.REDEEM, WALLET)
            except TokenAlreadyUsedError:
                return None

        with ThreadPoolExecutor(max_workers=6) as executor:
            results = list(executor.map(lambda _: attempt(), range(6)))

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        gateway.finalize(winners[0])


def test_sink_receives_every_token(store, clock):
    sink = InMemoryNotificationSink()
    gateway = ConfirmationGateway(store, clock=clock, notifier=sink)
    for action in ConfirmationAction:
        gateway.issue(action, WALLET)

    assert [e.action for e in sink.events] == list(ConfirmationAction)
