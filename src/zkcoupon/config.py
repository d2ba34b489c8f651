"""Runtime configuration for zkcoupon."""

import os
import secrets
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional

from .errors import ConfigurationError
from .logging import LogConfig, LogLevel


@dataclass
class CouponConfig:
    """Configuration shared by the protocol components."""

    # Confirmation gateway
    confirmation_ttl: float = 900.0  # 15 minutes
    max_confirmation_ttl: float = 86400.0
    token_bytes: int = 32
    reservation_timeout: float = 60.0

    # Storage
    lock_timeout: float = 10.0

    # Identity commitments
    identity_domain: str = "zkcoupon/identity/v1"

    # Logging
    log_level: str = "info"
    log_format: str = "json"

    # REST merchant authentication
    jwt_secret: str = field(default_factory=lambda: secrets.token_urlsafe(32))
    jwt_algorithm: str = "HS256"
    jwt_expiry: float = 86400.0

    # REST identity-service authentication; empty disables the raw wallet routes
    service_api_key: str = ""

    def validate(self) -> None:
        """Validate configuration parameters."""
        if self.confirmation_ttl <= 0:
            raise ConfigurationError(
                "confirmation_ttl must be positive",
                config_key="confirmation_ttl",
                config_value=self.confirmation_ttl,
            )
        if self.max_confirmation_ttl < self.confirmation_ttl:
            raise ConfigurationError(
                "max_confirmation_ttl must not be below confirmation_ttl",
                config_key="max_confirmation_ttl",
                config_value=self.max_confirmation_ttl,
            )
        if self.token_bytes < 16:
            raise ConfigurationError(
                "token_bytes must be at least 16",
                config_key="token_bytes",
                config_value=self.token_bytes,
            )
        if self.reservation_timeout <= 0:
            raise ConfigurationError(
                "reservation_timeout must be positive",
                config_key="reservation_timeout",
                config_value=self.reservation_timeout,
            )
        if self.lock_timeout <= 0:
            raise ConfigurationError(
                "lock_timeout must be positive",
                config_key="lock_timeout",
                config_value=self.lock_timeout,
            )
        if not self.identity_domain:
            raise ConfigurationError(
                "identity_domain cannot be empty", config_key="identity_domain"
            )
        try:
            LogLevel.parse(self.log_level)
        except ValueError as e:
            raise ConfigurationError(
                str(e), config_key="log_level", config_value=self.log_level
            )
        if self.log_format not in ("json", "text"):
            raise ConfigurationError(
                "log_format must be 'json' or 'text'",
                config_key="log_format",
                config_value=self.log_format,
            )
        if self.jwt_expiry <= 0:
            raise ConfigurationError(
                "jwt_expiry must be positive",
                config_key="jwt_expiry",
                config_value=self.jwt_expiry,
            )

    def log_config(self) -> LogConfig:
        """Build the logging configuration described by this config."""
        return LogConfig(
            level=LogLevel.parse(self.log_level), format_type=self.log_format
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, without secrets."""
        data = asdict(self)
        data.pop("jwt_secret")
        data.pop("service_api_key")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CouponConfig":
        """Create from dictionary. Unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration keys: {sorted(unknown)}",
                config_key=sorted(unknown)[0],
            )
        config = cls(**data)
        config.validate()
        return config

    @classmethod
    def from_env(
        cls, prefix: str = "ZKCOUPON_", environ: Optional[Dict[str, str]] = None
    ) -> "CouponConfig":
        """Create from environment variables such as ``ZKCOUPON_CONFIRMATION_TTL``."""
        environ = os.environ if environ is None else environ
        data: Dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(prefix + f.name.upper())
            if raw is None:
                continue
            try:
                if f.type is float:
                    data[f.name] = float(raw)
                elif f.type is int:
                    data[f.name] = int(raw)
                else:
                    data[f.name] = raw
            except ValueError:
                raise ConfigurationError(
                    f"Invalid value for {prefix + f.name.upper()}",
                    config_key=f.name,
                    config_value=raw,
                )
        return cls.from_dict(data)
