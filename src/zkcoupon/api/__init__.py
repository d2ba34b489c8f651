"""HTTP surface of zkcoupon: authentication and the REST app."""

from .auth import AuthError, MerchantAuth, ServiceAuth, TokenError

__all__ = ["MerchantAuth", "ServiceAuth", "AuthError", "TokenError"]
