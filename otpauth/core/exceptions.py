from enum import Enum
from typing import Optional, Any


class ErrorKind(str, Enum):
    """
    Every failure kind the authentication surface can report.

    OTP-layer kinds are returned inside results; the identity and credential
    kinds travel as exceptions.
    """
    INVALID_PHONE_FORMAT = "INVALID_PHONE_FORMAT"
    RATE_LIMITED = "RATE_LIMITED"
    RESEND_TOO_SOON = "RESEND_TOO_SOON"
    SMS_DISPATCH_FAILED = "SMS_DISPATCH_FAILED"
    NO_ACTIVE_SESSION = "NO_ACTIVE_SESSION"
    EXPIRED = "EXPIRED"
    INVALID_CODE = "INVALID_CODE"
    MAX_ATTEMPTS_EXCEEDED = "MAX_ATTEMPTS_EXCEEDED"
    SESSION_BUSY = "SESSION_BUSY"
    DUPLICATE_IDENTITY = "DUPLICATE_IDENTITY"
    CREDENTIAL_MINT_FAILED = "CREDENTIAL_MINT_FAILED"
    INVALID_CREDENTIAL = "INVALID_CREDENTIAL"


class OtpAuthError(Exception):
    """
    Base exception for the authentication service.

    ``message`` is what the client sees; ``details`` is for operators and is
    only written to logs for fatal errors.
    """
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500, details: Optional[Any] = None):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class DuplicateIdentityError(OtpAuthError):
    """
    Raised when a second identity would be created for a phone number.
    """
    def __init__(self, message: str = "This phone number is already registered", details: Optional[Any] = None):
        super().__init__(message, code=ErrorKind.DUPLICATE_IDENTITY.value, status_code=409, details=details)


class CredentialMintError(OtpAuthError):
    """
    Raised when a session credential cannot be signed (missing or broken signer).
    """
    def __init__(self, message: str = "Unable to sign in right now", details: Optional[Any] = None):
        super().__init__(message, code=ErrorKind.CREDENTIAL_MINT_FAILED.value, status_code=500, details=details)


class InvalidCredentialError(OtpAuthError):
    """
    Raised when a presented credential or registration ticket fails validation.
    """
    def __init__(self, message: str = "Invalid or expired credential", details: Optional[Any] = None):
        super().__init__(message, code=ErrorKind.INVALID_CREDENTIAL.value, status_code=401, details=details)


class IdentityNotFoundError(OtpAuthError):
    """
    Raised when an identity id has no directory record.
    """
    def __init__(self, message: str = "Identity not found", details: Optional[Any] = None):
        super().__init__(message, code="NOT_FOUND", status_code=404, details=details)


class ConfigurationError(OtpAuthError):
    """
    Raised when a backend (SMS, signer, store) is not configured correctly.
    """
    def __init__(self, message: str = "Service is not configured", details: Optional[Any] = None):
        super().__init__(message, code="CONFIGURATION_ERROR", status_code=500, details=details)


class ValidationError(OtpAuthError):
    """
    Raised when input validation fails outside of pydantic.
    """
    def __init__(self, message: str = "Validation error", details: Optional[Any] = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=422, details=details)
