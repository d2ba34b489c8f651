"""
Unit tests for the error hierarchy.
"""

import pytest

from zkcoupon.errors import (
    ConfigurationError,
    ConflictError,
    CouponAlreadyRedeemedError,
    CouponError,
    CouponExpiredError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    ExpiryError,
    InvalidProofError,
    IssuanceCapReachedError,
    LockTimeoutError,
    MerchantInactiveError,
    ProofRejectedError,
    RecoveryConflictError,
    StorageError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
    ValidationError,
)


class TestCouponError:
    """Test the root exception."""

    def test_defaults(self):
        error = CouponError("boom")

        assert error.message == "boom"
        assert error.error_code == "CouponError"
        assert error.category == ErrorCategory.SYSTEM
        assert error.severity == ErrorSeverity.MEDIUM
        assert error.retryable is False
        assert isinstance(error.context, ErrorContext)

    def test_to_dict(self):
        cause = ValueError("inner")
        error = CouponError(
            "boom",
            context=ErrorContext(component="ledger", operation="issue"),
            cause=cause,
            metadata={"k": "v"},
        )
        data = error.to_dict()

        assert data["type"] == "CouponError"
        assert data["message"] == "boom"
        assert data["cause"] == "inner"
        assert data["metadata"] == {"k": "v"}
        assert data["context"]["component"] == "ledger"
        assert data["context"]["operation"] == "issue"

    def test_str_includes_code_and_category(self):
        text = str(IssuanceCapReachedError("full"))

        assert "IssuanceCapReachedError: full" in text
        assert "Code: IssuanceCapReached" in text
        assert "Category: conflict" in text

    def test_explicit_code_overrides_class_code(self):
        error = ValidationError("bad", error_code="Custom")
        assert error.error_code == "Custom"


class TestErrorFamilies:
    """Test that every kind lands in the family its category names."""

    @pytest.mark.parametrize(
        "error_class,family,category",
        [
            (MerchantInactiveError, ValidationError, ErrorCategory.VALIDATION),
            (TokenNotFoundError, ValidationError, ErrorCategory.VALIDATION),
            (IssuanceCapReachedError, ConflictError, ErrorCategory.CONFLICT),
            (CouponAlreadyRedeemedError, ConflictError, ErrorCategory.CONFLICT),
            (TokenAlreadyUsedError, ConflictError, ErrorCategory.CONFLICT),
            (RecoveryConflictError, ConflictError, ErrorCategory.CONFLICT),
            (CouponExpiredError, ExpiryError, ErrorCategory.EXPIRY),
            (TokenExpiredError, ExpiryError, ErrorCategory.EXPIRY),
            (LockTimeoutError, StorageError, ErrorCategory.STORAGE),
        ],
    )
    def test_family(self, error_class, family, category):
        error = error_class("x")
        assert isinstance(error, family)
        assert isinstance(error, CouponError)
        assert error.category == category

    def test_proof_rejection_is_validation(self):
        error = InvalidProofError()

        assert isinstance(error, ProofRejectedError)
        assert isinstance(error, ValidationError)
        assert error.category == ErrorCategory.PROOF_REJECTED
        assert error.error_code == "InvalidProof"
        assert error.message == "Proof rejected"

    def test_validation_fields(self):
        error = ValidationError("bad ttl", field="ttl", value=-1)
        data = error.to_dict()

        assert data["field"] == "ttl"
        assert data["value"] == "-1"

    def test_configuration_error_keeps_key(self):
        error = ConfigurationError("bad", config_key="lock_timeout", config_value=0)

        assert error.config_key == "lock_timeout"
        assert error.config_value == 0
        assert error.category == ErrorCategory.CONFIGURATION

    def test_storage_error_keeps_location(self):
        error = LockTimeoutError("slow", table="coupons", key="cpn_1")

        assert error.table == "coupons"
        assert error.key == "cpn_1"
        assert error.error_code == "LockTimeout"
