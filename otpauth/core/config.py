"""
otpauth/core/config.py

Purpose: Application configuration

- Loads environment variables
- Centralizes config values (DB URI, KV store, SMS backend, signing secret)
- Validates configuration on startup
- Environment-specific settings
"""

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, Literal


DEFAULT_JWT_SECRET = "change-me-in-production"

# Headroom a per-phone lock needs beyond the SMS dispatch for the store reads and writes around it
KV_LOCK_MARGIN_SECONDS = 5


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Validates all required configs on startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"

    # MongoDB (user directory)
    USER_DIRECTORY_BACKEND: Literal["mongo", "memory"] = Field(
        default="mongo",
        description="Where identities live: MongoDB or an in-process map (tests/dev only)"
    )
    MONGODB_URL: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI"
    )
    MONGODB_DB_NAME: str = Field(
        default="otpauth",
        description="MongoDB database name"
    )
    MONGODB_MAX_POOL_SIZE: int = Field(default=50, ge=1, description="Motor connection pool size")
    MONGODB_CONNECT_RETRIES: int = Field(default=3, ge=1, description="Connect attempts at startup")

    # Redis (OTP sessions and rate-limit windows)
    REDIS_URL: Optional[str] = Field(
        default=None,
        description="Redis URL for OTP sessions; in-process store when unset"
    )
    KV_LOCK_TIMEOUT_SECONDS: Optional[float] = Field(
        default=None,
        description="Maximum time a per-phone lock may be held; defaults to the SMS timeout plus a margin"
    )
    KV_LOCK_BLOCKING_TIMEOUT_SECONDS: float = Field(
        default=5,
        description="Maximum time to wait for a per-phone lock"
    )

    # OTP policy
    OTP_LENGTH: int = Field(default=6, ge=4, le=10, description="Number of digits in a code")
    OTP_EXPIRY_SECONDS: int = Field(default=300, description="Code lifetime")
    OTP_EXPIRED_RETENTION_SECONDS: int = Field(
        default=300,
        ge=0,
        description="How long an expired session stays readable so verification can report EXPIRED"
    )
    OTP_MAX_ATTEMPTS: int = Field(default=3, ge=1, description="Wrong submissions before the code is burned")
    OTP_RESEND_COOLDOWN_SECONDS: int = Field(
        default=30,
        description="Minimum gap between two sends to the same number"
    )
    OTP_RATE_LIMIT_MAX_SENDS: int = Field(
        default=5,
        description="Maximum sends per phone number inside the rate-limit window"
    )
    OTP_RATE_LIMIT_WINDOW_SECONDS: int = Field(
        default=3600,
        description="Sliding rate-limit window"
    )
    OTP_CLEANUP_INTERVAL_SECONDS: int = Field(
        default=60,
        description="Interval of the background sweep of expired sessions"
    )
    OTP_HMAC_KEY: Optional[str] = Field(
        default=None,
        description="Key used to hash stored codes (falls back to JWT_SECRET)"
    )
    DEFAULT_COUNTRY_CODE: str = Field(
        default="+91",
        description="Country code assumed for bare 10-digit national numbers"
    )

    # SMS dispatch
    SMS_BACKEND: Literal["noop", "console", "twilio", "fast2sms"] = Field(
        default="console",
        description="SMS backend used to deliver codes"
    )
    SMS_DISPATCH_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Upper bound on a single dispatch, after which the send is rolled back"
    )
    SMS_SENDER_NAME: str = Field(
        default="OTPAuth",
        description="Brand name used in the verification message"
    )
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_FROM_NUMBER: Optional[str] = None
    FAST2SMS_API_KEY: Optional[str] = None
    FAST2SMS_BASE_URL: str = Field(
        default="https://www.fast2sms.com/dev/bulkV2",
        description="Fast2SMS bulk API endpoint"
    )

    # Credentials
    JWT_SECRET: Optional[str] = Field(
        default=DEFAULT_JWT_SECRET,
        description="HMAC secret used to sign session credentials"
    )
    JWT_ISSUER: str = "otpauth"
    JWT_AUDIENCE: str = "otpauth-client"
    ACCESS_TOKEN_TTL_SECONDS: int = Field(default=60 * 60 * 24, description="Credential lifetime")
    REFRESH_GRACE_SECONDS: int = Field(
        default=60 * 60 * 24 * 7,
        description="How long after expiry a credential can still be refreshed"
    )
    REGISTRATION_TOKEN_TTL_SECONDS: int = Field(
        default=15 * 60,
        description="Lifetime of the ticket that lets a verified new number register"
    )

    # Application
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    API_PREFIX: str = Field(
        default="/api/v1",
        description="API route prefix"
    )
    CORS_ORIGINS: list = Field(
        default=["*"],
        description="Allowed CORS origins"
    )

    @field_validator("JWT_SECRET")
    @classmethod
    def validate_jwt_secret(cls, v, info: ValidationInfo):
        """Ensure the signing secret is changed in production."""
        if info.data.get("ENVIRONMENT") == "production" and v == DEFAULT_JWT_SECRET:
            raise ValueError("JWT_SECRET must be changed in production environment")
        return v

    @field_validator("DEFAULT_COUNTRY_CODE")
    @classmethod
    def validate_country_code(cls, v):
        if not v.startswith("+") or not v[1:].isdigit():
            raise ValueError("DEFAULT_COUNTRY_CODE must look like +91")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def otp_hmac_key(self) -> str:
        return self.OTP_HMAC_KEY or self.JWT_SECRET or ""

    @property
    def kv_lock_timeout(self) -> float:
        """Lifetime of a per-phone lock. It has to outlast the SMS dispatch it wraps."""
        if self.KV_LOCK_TIMEOUT_SECONDS is not None:
            return self.KV_LOCK_TIMEOUT_SECONDS
        return self.SMS_DISPATCH_TIMEOUT_SECONDS + KV_LOCK_MARGIN_SECONDS


# Global settings instance
settings = Settings()


def validate_settings(config: Settings = settings):
    """
    Validates critical settings on application startup.
    Raises ValueError if any required setting is missing or invalid.
    """
    errors = []

    if config.USER_DIRECTORY_BACKEND == "mongo" and not config.MONGODB_URL:
        errors.append("MONGODB_URL is required when USER_DIRECTORY_BACKEND=mongo")

    if config.OTP_RESEND_COOLDOWN_SECONDS >= config.OTP_EXPIRY_SECONDS:
        errors.append("OTP_RESEND_COOLDOWN_SECONDS must be shorter than OTP_EXPIRY_SECONDS")

    if config.OTP_RATE_LIMIT_MAX_SENDS < 1:
        errors.append("OTP_RATE_LIMIT_MAX_SENDS must be at least 1")

    if config.kv_lock_timeout < config.SMS_DISPATCH_TIMEOUT_SECONDS + KV_LOCK_MARGIN_SECONDS:
        errors.append(
            f"KV_LOCK_TIMEOUT_SECONDS must be at least SMS_DISPATCH_TIMEOUT_SECONDS + {KV_LOCK_MARGIN_SECONDS}"
        )

    # Production-specific validations
    if config.is_production:
        if config.SMS_BACKEND == "noop":
            errors.append("SMS_BACKEND=noop is not allowed in production")
        if config.SMS_BACKEND == "twilio" and not (
            config.TWILIO_ACCOUNT_SID and config.TWILIO_AUTH_TOKEN and config.TWILIO_FROM_NUMBER
        ):
            errors.append("TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_FROM_NUMBER are required")
        if config.SMS_BACKEND == "fast2sms" and not config.FAST2SMS_API_KEY:
            errors.append("FAST2SMS_API_KEY is required")
        if not config.REDIS_URL:
            errors.append("REDIS_URL is required in production")
        if config.USER_DIRECTORY_BACKEND != "mongo":
            errors.append("USER_DIRECTORY_BACKEND must be mongo in production")

    if errors:
        raise ValueError(f"Configuration validation failed: {', '.join(errors)}")

    return True
