"""zkcoupon error handling.

This module provides the exception hierarchy for the coupon protocol. Errors
fall into the categories validation, conflict, expiry and proof rejection,
and each concrete class carries a stable error code.
"""

from .exceptions import (
    ConfigurationError,
    ConflictError,
    CouponAlreadyRedeemedError,
    CouponError,
    CouponExpiredError,
    CouponNotFoundError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    ExpiryError,
    InvalidProgramParamsError,
    InvalidProofError,
    InvalidStateTransitionError,
    IssuanceCapReachedError,
    LockTimeoutError,
    MerchantExistsError,
    MerchantInactiveError,
    MerchantNotFoundError,
    ProgramNotFoundError,
    ProofRejectedError,
    RecoveryConflictError,
    ReservationLostError,
    StorageError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenMismatchError,
    TokenNotFoundError,
    UnauthorizedError,
    ValidationError,
    WalletExistsError,
    WalletNotFoundError,
)

__all__ = [
    # Base and families
    "CouponError",
    "ErrorCategory",
    "ErrorContext",
    "ErrorSeverity",
    "ValidationError",
    "ConflictError",
    "ExpiryError",
    "ProofRejectedError",
    "ConfigurationError",
    "StorageError",
    # Registry
    "MerchantNotFoundError",
    "MerchantExistsError",
    "MerchantInactiveError",
    "ProgramNotFoundError",
    "InvalidProgramParamsError",
    "UnauthorizedError",
    # Ledger
    "IssuanceCapReachedError",
    "InvalidProofError",
    "CouponNotFoundError",
    "CouponExpiredError",
    "CouponAlreadyRedeemedError",
    "InvalidStateTransitionError",
    # Confirmation
    "TokenNotFoundError",
    "TokenExpiredError",
    "TokenAlreadyUsedError",
    "TokenMismatchError",
    "ReservationLostError",
    # Wallet
    "WalletExistsError",
    "WalletNotFoundError",
    "RecoveryConflictError",
    # Storage
    "LockTimeoutError",
]
