"""Exception hierarchy for zkcoupon.

This module defines the exception hierarchy for the coupon protocol. Every
rejected operation surfaces one of these with a stable ``error_code`` so
callers can branch on the kind without parsing messages.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    EXPIRY = "expiry"
    PROOF_REJECTED = "proof_rejected"
    CONFIGURATION = "configuration"
    STORAGE = "storage"
    SYSTEM = "system"


@dataclass
class ErrorContext:
    """Context information for an error."""

    timestamp: float = field(default_factory=time.time)
    component: Optional[str] = None
    operation: Optional[str] = None
    entity_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        return {
            "timestamp": self.timestamp,
            "component": self.component,
            "operation": self.operation,
            "entity_id": self.entity_id,
            "metadata": self.metadata,
        }


class CouponError(Exception):
    """Base exception for all zkcoupon errors."""

    code = "CouponError"
    default_category = ErrorCategory.SYSTEM
    default_severity = ErrorSeverity.MEDIUM

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: Optional[ErrorSeverity] = None,
        category: Optional[ErrorCategory] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.code
        self.severity = severity or self.default_severity
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause
        self.metadata = metadata or {}
        self.timestamp = time.time()

    @property
    def retryable(self) -> bool:
        """Nothing in the protocol is retried transparently."""
        return False

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }

    def __str__(self) -> str:
        """String representation of the error."""
        parts = [f"{self.__class__.__name__}: {self.message}"]

        if self.error_code:
            parts.append(f"Code: {self.error_code}")

        if self.category != ErrorCategory.SYSTEM:
            parts.append(f"Category: {self.category.value}")

        return " | ".join(parts)


# Error families, one per category.


class ValidationError(CouponError):
    """Malformed or unauthorized input."""

    code = "ValidationError"
    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> Dict[str, Any]:
        """Convert validation error to dictionary."""
        data = super().to_dict()
        data.update(
            {
                "field": self.field,
                "value": str(self.value) if self.value is not None else None,
            }
        )
        return data


class ConflictError(CouponError):
    """The attempted transition lost against existing state."""

    code = "ConflictError"
    default_category = ErrorCategory.CONFLICT


class ExpiryError(CouponError):
    """A token or coupon is past its expiry."""

    code = "ExpiryError"
    default_category = ErrorCategory.EXPIRY


class ProofRejectedError(ValidationError):
    """A proof failed verification. Never says why."""

    code = "ProofRejected"
    default_category = ErrorCategory.PROOF_REJECTED
    default_severity = ErrorSeverity.HIGH


class ConfigurationError(CouponError):
    """Configuration error."""

    code = "ConfigurationError"
    default_category = ErrorCategory.CONFIGURATION

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.config_key = config_key
        self.config_value = config_value


class StorageError(CouponError):
    """Storage error."""

    code = "StorageError"
    default_category = ErrorCategory.STORAGE
    default_severity = ErrorSeverity.HIGH

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        key: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.table = table
        self.key = key


# Registry


class MerchantNotFoundError(ValidationError):
    code = "MerchantNotFound"


class MerchantExistsError(ConflictError):
    code = "MerchantExists"


class MerchantInactiveError(ValidationError):
    code = "MerchantInactive"


class ProgramNotFoundError(ValidationError):
    code = "ProgramNotFound"


class InvalidProgramParamsError(ValidationError):
    code = "InvalidProgramParams"


class UnauthorizedError(ValidationError):
    code = "Unauthorized"


# Ledger


class IssuanceCapReachedError(ConflictError):
    code = "IssuanceCapReached"


class InvalidProofError(ProofRejectedError):
    code = "InvalidProof"

    def __init__(self, message: str = "Proof rejected", **kwargs):
        super().__init__(message, **kwargs)


class CouponNotFoundError(ValidationError):
    code = "CouponNotFound"


class CouponExpiredError(ExpiryError):
    code = "CouponExpired"


class CouponAlreadyRedeemedError(ConflictError):
    code = "CouponAlreadyRedeemed"


class InvalidStateTransitionError(ConflictError):
    code = "InvalidStateTransition"


# Confirmation gateway


class TokenNotFoundError(ValidationError):
    code = "TokenNotFound"


class TokenExpiredError(ExpiryError):
    code = "TokenExpired"


class TokenAlreadyUsedError(ConflictError):
    code = "TokenAlreadyUsed"


class TokenMismatchError(ValidationError):
    code = "TokenMismatch"


class ReservationLostError(ConflictError):
    code = "ReservationLost"


# Wallet directory


class WalletExistsError(ConflictError):
    code = "WalletExists"


class WalletNotFoundError(ValidationError):
    code = "WalletNotFound"


class RecoveryConflictError(ConflictError):
    code = "RecoveryConflict"


# Storage


class LockTimeoutError(StorageError):
    code = "LockTimeout"
