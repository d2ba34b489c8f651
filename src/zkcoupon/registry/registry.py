"""
Merchant and program registry.

Owns merchant and program records and the verification keys bound to each
program. Verification keys are versioned: registering a key bumps the
program's ``key_version`` and keeps every earlier version, so coupons issued
under an old key remain redeemable with proofs that reference it.
"""

import time
from dataclasses import replace
from typing import Callable, List, Optional

from ..core.context import CallerContext
from ..core.models import Merchant, Program, generate_id
from ..crypto.commitments import is_address
from ..crypto.zkp import VerificationKey
from ..errors import (
    InvalidProgramParamsError,
    MerchantExistsError,
    MerchantInactiveError,
    MerchantNotFoundError,
    ProgramNotFoundError,
    ValidationError,
)
from ..logging import LogContext, get_logger
from ..storage import StateStore, Table

logger = get_logger(__name__)


def key_slot(program_id: str, version: int) -> str:
    """Storage key of one verification-key version."""
    return f"{program_id}@{version}"


class MerchantRegistry:
    """Merchant, program and verification-key records."""

    def __init__(self, store: StateStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    # Merchants

    def register_merchant(
        self,
        wallet_address: str,
        name: str = "",
        merchant_id: Optional[str] = None,
    ) -> Merchant:
        """Create an active merchant."""
        if not is_address(wallet_address):
            raise ValidationError(
                "Invalid merchant wallet address",
                field="wallet_address",
                value=wallet_address,
            )
        merchant_id = merchant_id or generate_id("mer")

        with self.store.transaction([(Table.MERCHANTS, merchant_id)]) as txn:
            if txn.exists(Table.MERCHANTS, merchant_id):
                raise MerchantExistsError(f"Merchant {merchant_id} already exists")
            merchant = Merchant(
                merchant_id=merchant_id,
                wallet_address=wallet_address,
                name=name,
                created_at=self.clock(),
            )
            txn.insert(Table.MERCHANTS, merchant_id, merchant)

        logger.info(
            "Registered merchant",
            context=LogContext(component="registry", merchant_id=merchant_id),
        )
        return merchant

    def update_merchant_details(
        self,
        caller: CallerContext,
        merchant_id: str,
        wallet_address: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Merchant:
        """Change a merchant's wallet address and/or display name."""
        caller.require_merchant(merchant_id)
        if wallet_address is not None and not is_address(wallet_address):
            raise ValidationError(
                "Invalid merchant wallet address",
                field="wallet_address",
                value=wallet_address,
            )

        with self.store.transaction([(Table.MERCHANTS, merchant_id)]) as txn:
            merchant = self._require_merchant(txn.get(Table.MERCHANTS, merchant_id), merchant_id)
            updated = replace(
                merchant,
                wallet_address=wallet_address if wallet_address is not None else merchant.wallet_address,
                name=name if name is not None else merchant.name,
            )
            txn.put(Table.MERCHANTS, merchant_id, updated)

        logger.info(
            "Updated merchant details",
            context=LogContext(component="registry", merchant_id=merchant_id),
        )
        return updated

    def deactivate_merchant(self, caller: CallerContext, merchant_id: str) -> Merchant:
        """Deactivate a merchant. Its coupons stay on record; no new issuance."""
        caller.require_merchant(merchant_id)
        with self.store.transaction([(Table.MERCHANTS, merchant_id)]) as txn:
            merchant = self._require_merchant(txn.get(Table.MERCHANTS, merchant_id), merchant_id)
            updated = replace(merchant, active=False)
            txn.put(Table.MERCHANTS, merchant_id, updated)

        logger.info(
            "Deactivated merchant",
            context=LogContext(component="registry", merchant_id=merchant_id),
        )
        return updated

    def get_merchant(self, merchant_id: str) -> Merchant:
        return self._require_merchant(self.store.get(Table.MERCHANTS, merchant_id), merchant_id)

    def list_merchants(self, active_only: bool = False) -> List[Merchant]:
        merchants = self.store.scan(
            Table.MERCHANTS, (lambda m: m.active) if active_only else None
        )
        return sorted(merchants, key=lambda m: (m.created_at, m.merchant_id))

    # Programs

    def create_program(
        self,
        caller: CallerContext,
        merchant_id: str,
        validity_period: float,
        max_issuance: int,
        verification_key: Optional[VerificationKey] = None,
        name: str = "",
        program_id: Optional[str] = None,
    ) -> Program:
        """Create a program for an active merchant, optionally with its first key."""
        caller.require_merchant(merchant_id)
        if isinstance(max_issuance, bool) or not isinstance(max_issuance, int) or max_issuance <= 0:
            raise InvalidProgramParamsError(
                "max_issuance must be a positive integer",
                field="max_issuance",
                value=max_issuance,
            )
        if not isinstance(validity_period, (int, float)) or validity_period <= 0:
            raise InvalidProgramParamsError(
                "validity_period must be positive",
                field="validity_period",
                value=validity_period,
            )

        program_id = program_id or generate_id("prg")
        keys = [(Table.MERCHANTS, merchant_id), (Table.PROGRAMS, program_id)]
        if verification_key is not None:
            keys.append((Table.VERIFICATION_KEYS, key_slot(program_id, 1)))

        with self.store.transaction(keys) as txn:
            merchant = self._require_merchant(txn.get(Table.MERCHANTS, merchant_id), merchant_id)
            if not merchant.active:
                raise MerchantInactiveError(f"Merchant {merchant_id} is inactive")
            if txn.exists(Table.PROGRAMS, program_id):
                raise InvalidProgramParamsError(
                    f"Program {program_id} already exists", field="program_id", value=program_id
                )

            program = Program(
                program_id=program_id,
                merchant_id=merchant_id,
                validity_period=float(validity_period),
                max_issuance=max_issuance,
                created_at=self.clock(),
                name=name,
            )
            if verification_key is not None:
                program = replace(program, key_version=1)
                txn.insert(
                    Table.VERIFICATION_KEYS,
                    key_slot(program_id, 1),
                    replace(verification_key, version=1),
                )
            txn.insert(Table.PROGRAMS, program_id, program)

        logger.info(
            "Created program",
            context=LogContext(component="registry", merchant_id=merchant_id),
            extra={"program_id": program_id, "max_issuance": max_issuance},
        )
        return program

    def register_verification_key(
        self, caller: CallerContext, program_id: str, verification_key: VerificationKey
    ) -> Program:
        """Rotate in a new verification key; returns the program with its new key version."""
        program = self.get_program(program_id)
        caller.require_merchant(program.merchant_id)

        # The program lock serializes rotations, so the next slot is stable.
        next_version = program.key_version + 1
        keys = [
            (Table.MERCHANTS, program.merchant_id),
            (Table.PROGRAMS, program_id),
            (Table.VERIFICATION_KEYS, key_slot(program_id, next_version)),
        ]
        with self.store.transaction(keys) as txn:
            merchant = self._require_merchant(
                txn.get(Table.MERCHANTS, program.merchant_id), program.merchant_id
            )
            if not merchant.active:
                raise MerchantInactiveError(f"Merchant {merchant.merchant_id} is inactive")
            current = txn.get(Table.PROGRAMS, program_id)
            if current.key_version + 1 != next_version:
                # A concurrent rotation won; retry against the new version.
                return self.register_verification_key(caller, program_id, verification_key)
            updated = replace(current, key_version=next_version)
            txn.insert(
                Table.VERIFICATION_KEYS,
                key_slot(program_id, next_version),
                replace(verification_key, version=next_version),
            )
            txn.put(Table.PROGRAMS, program_id, updated)

        logger.info(
            "Registered verification key",
            context=LogContext(component="registry", merchant_id=program.merchant_id),
            extra={"program_id": program_id, "key_version": next_version},
        )
        return updated

    def get_program(self, program_id: str) -> Program:
        program = self.store.get(Table.PROGRAMS, program_id)
        if program is None:
            raise ProgramNotFoundError(f"Program {program_id} not found", field="program_id", value=program_id)
        return program

    def list_programs(self, merchant_id: Optional[str] = None) -> List[Program]:
        programs = self.store.scan(
            Table.PROGRAMS,
            (lambda p: p.merchant_id == merchant_id) if merchant_id is not None else None,
        )
        return sorted(programs, key=lambda p: (p.created_at, p.program_id))

    def get_verification_key(
        self, program_id: str, version: Optional[int] = None
    ) -> Optional[VerificationKey]:
        """Key for ``version`` (default: current). None if no such key."""
        if version is None:
            version = self.get_program(program_id).key_version
        if version <= 0:
            return None
        return self.store.get(Table.VERIFICATION_KEYS, key_slot(program_id, version))

    @staticmethod
    def _require_merchant(merchant: Optional[Merchant], merchant_id: str) -> Merchant:
        if merchant is None:
            raise MerchantNotFoundError(
                f"Merchant {merchant_id} not found", field="merchant_id", value=merchant_id
            )
        return merchant
