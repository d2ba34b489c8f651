"""
Authentication for the REST surface.

Merchants receive a JWT bearer token when they register. The token subject
is the merchant id; a verified token becomes the ``CallerContext`` that the
registry and ledger use for their authorization checks.
The identity service authenticates with a static API key instead.
"""

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

import jwt

from ..config import CouponConfig
from ..core.context import CallerContext


class AuthError(Exception):
    """Authentication error."""
    pass


class TokenError(AuthError):
    """Token-related error."""
    pass


class MerchantAuth:
    """JWT-based merchant authentication."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", token_expiry: float = 86400.0):
        if not secret_key:
            raise ValueError("secret_key cannot be empty")
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.token_expiry = timedelta(seconds=token_expiry)

    @classmethod
    def from_config(cls, config: CouponConfig) -> "MerchantAuth":
        return cls(
            secret_key=config.jwt_secret,
            algorithm=config.jwt_algorithm,
            token_expiry=config.jwt_expiry,
        )

    def create_token(self, merchant_id: str) -> str:
        """Create JWT token."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": merchant_id,
            "iat": now,
            "exp": now + self.token_expiry,
            "jti": secrets.token_urlsafe(16),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def decode(self, token: str) -> Dict[str, Any]:
        """Verify JWT token and return its claims."""
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenError("Token has expired")
        except jwt.InvalidTokenError:
            raise TokenError("Invalid token")

    def verify_token(self, token: str, request_id: Optional[str] = None) -> CallerContext:
        """Caller context of the merchant the token was issued to."""
        claims = self.decode(token)
        return CallerContext.for_merchant(claims["sub"], request_id=request_id)


class ServiceAuth:
    """API key authentication for the identity service.

    Guards the raw wallet routes, which bypass email confirmation and are
    only for the trusted identity service.
    """

    def __init__(self, api_keys: Iterable[str] = ()):
        self.api_keys = [key for key in api_keys if key]

    @classmethod
    def from_config(cls, config: CouponConfig) -> "ServiceAuth":
        return cls([config.service_api_key])

    @property
    def enabled(self) -> bool:
        return bool(self.api_keys)

    def verify_api_key(self, api_key: Optional[str]) -> None:
        """Raise AuthError unless ``api_key`` is one of the configured keys."""
        if not self.enabled:
            raise AuthError("Identity service access is disabled")
        if not api_key:
            raise AuthError("Missing API key")
        candidate = api_key.encode("utf-8")
        # Compare against every key so timing does not reveal which matched.
        matched = False
        for key in self.api_keys:
            matched |= hmac.compare_digest(candidate, key.encode("utf-8"))
        if not matched:
            raise AuthError("Invalid API key")
