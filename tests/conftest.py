"""
Shared fixtures for the zkcoupon test suite.

Tests drive time with ``ManualClock`` and build merchants, programs, wallets
and proofs through ``CouponWorld``.
"""

import threading
from dataclasses import dataclass
from typing import Optional, Tuple

import pytest

from zkcoupon import CallerContext, CouponConfig, CouponService
from zkcoupon.core.events import InMemoryNotificationSink
from zkcoupon.core.models import Coupon, Program
from zkcoupon.crypto.commitments import (
    identity_commitment,
    metadata_commitment,
    recovery_commitment,
)
from zkcoupon.crypto.zkp import (
    IssuanceInputs,
    Proof,
    ProofGenerator,
    ProofScheme,
    ProvingKey,
    RedemptionInputs,
    generate_keypair,
)
from zkcoupon.logging import LogLevel, MemoryHandler, get_log_manager
from zkcoupon.storage import StateStore

START_TIME = 1_700_000_000.0
MERCHANT_WALLET = "0x" + "ab" * 20


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = START_TIME):
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        with self._lock:
            self._now += seconds
            return self._now


@dataclass(frozen=True)
class WalletKeys:
    """A created wallet and the secrets its owner holds."""

    address: str
    identity_commitment: str
    recovery_key: ProvingKey


class CouponWorld:
    """One merchant with a program key, plus helpers to make wallets and proofs."""

    def __init__(
        self,
        service: CouponService,
        scheme: ProofScheme = ProofScheme.HMAC_SHA256,
        merchant_wallet: str = MERCHANT_WALLET,
        name: str = "Corner Cafe",
    ):
        self.service = service
        self.proving_key, self.verification_key = generate_keypair(scheme)
        self.prover = ProofGenerator(self.proving_key)
        self.merchant = service.register_merchant(merchant_wallet, name=name)
        self.caller = CallerContext.for_merchant(self.merchant.merchant_id)

    def create_program(self, max_issuance: int = 10, validity_period: float = 3600.0) -> Program:
        return self.service.create_program(
            self.caller,
            self.merchant.merchant_id,
            validity_period,
            max_issuance,
            verification_key=self.verification_key,
        )

    def create_wallet(self, email: str) -> WalletKeys:
        commitment = identity_commitment(email)
        recovery_key, recovery_public = generate_keypair(ProofScheme.ECDSA_SECP256K1)
        address = self.service.create_wallet(
            commitment, recovery_commitment(recovery_public.key_data)
        )
        return WalletKeys(address, commitment, recovery_key)

    def issuance(
        self,
        program: Program,
        owner: str,
        terms: Optional[dict] = None,
        prover: Optional[ProofGenerator] = None,
    ) -> Tuple[str, Proof, IssuanceInputs]:
        """Metadata commitment, proof and public inputs for one issuance request."""
        commitment, _ = metadata_commitment(terms or {"discount": "10%"})
        current = self.service.get_program(program.program_id)
        inputs = IssuanceInputs(
            program_id=program.program_id,
            owner_wallet=owner,
            metadata_commitment=commitment,
            key_version=current.key_version,
        )
        return commitment, (prover or self.prover).prove(inputs), inputs

    def issue(self, program: Program, owner: str, terms: Optional[dict] = None) -> Coupon:
        commitment, proof, inputs = self.issuance(program, owner, terms)
        return self.service.issue(program.program_id, owner, commitment, proof, inputs)

    def redemption_proof(self, coupon: Coupon, prover: Optional[ProofGenerator] = None) -> Proof:
        inputs = RedemptionInputs(
            token_id=coupon.token_id,
            owner_wallet=coupon.owner_wallet,
            key_version=coupon.key_version,
        )
        return (prover or self.prover).prove(inputs)

    def start_redemption(self, coupon: Coupon, ttl: Optional[float] = None) -> str:
        """Initiate redemption and return the token value delivered to the owner."""
        self.service.initiate_redemption(self.caller, coupon.token_id, ttl=ttl)
        event = self.service.notifier.latest(target_wallet=coupon.owner_wallet)
        return event.token


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def config():
    return CouponConfig(
        confirmation_ttl=300.0,
        reservation_timeout=30.0,
        lock_timeout=5.0,
        jwt_secret="test-secret",
    )


@pytest.fixture
def store():
    return StateStore(lock_timeout=5.0)


@pytest.fixture
def notifier():
    return InMemoryNotificationSink()


@pytest.fixture
def service(config, store, notifier, clock):
    return CouponService(config=config, store=store, notifier=notifier, clock=clock)


@pytest.fixture
def world(service):
    return CouponWorld(service)


@pytest.fixture
def program(world):
    return world.create_program(max_issuance=10, validity_period=3600.0)


@pytest.fixture
def alice(world):
    return world.create_wallet("alice@example.com")


@pytest.fixture
def bob(world):
    return world.create_wallet("bob@example.com")


@pytest.fixture
def log_capture():
    """Attach a memory handler to the global log manager for one test."""
    manager = get_log_manager()
    handler = MemoryHandler()
    manager.add_handler("test-memory", handler)
    previous = manager.config.level
    manager.set_level(LogLevel.TRACE)
    yield handler
    manager.set_level(previous)
    manager.remove_handler("test-memory")


@pytest.fixture
def make_world(service):
    """Build further merchants on the same service."""

    def factory(**kwargs) -> CouponWorld:
        return CouponWorld(service, **kwargs)

    return factory
