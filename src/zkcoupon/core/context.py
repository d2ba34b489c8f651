"""Caller context passed into operations that need authorization."""

from dataclasses import dataclass
from typing import Optional

from ..errors import UnauthorizedError


@dataclass(frozen=True)
class CallerContext:
    """Who is calling. Authentication happens outside the core."""

    merchant_id: Optional[str] = None
    request_id: Optional[str] = None

    @classmethod
    def for_merchant(cls, merchant_id: str, request_id: Optional[str] = None) -> "CallerContext":
        return cls(merchant_id=merchant_id, request_id=request_id)

    def require_merchant(self, merchant_id: str) -> None:
        """Raise UnauthorizedError unless the caller acts for ``merchant_id``."""
        if self.merchant_id is None or self.merchant_id != merchant_id:
            raise UnauthorizedError(
                "Caller is not authorized for this merchant",
                field="merchant_id",
                value=self.merchant_id,
            )
