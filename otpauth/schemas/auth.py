"""
otpauth/schemas/auth.py

Purpose: Request/response payloads for the auth and profile routes

- camelCase on the wire, snake_case in Python
- Examples for the OpenAPI docs
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from otpauth.flow.states import AuthState


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ----------------------------------------------------------------------
# Requests
# ----------------------------------------------------------------------

class SendCodeRequest(CamelModel):
    phone_number: str = Field(..., min_length=4, max_length=32, description="Phone number, ideally E.164")
    is_resend: bool = Field(default=False, description="Set when the user taps 'resend'")

    model_config = ConfigDict(json_schema_extra={"example": {"phoneNumber": "+15551234567", "isResend": False}})


class VerifyCodeRequest(CamelModel):
    phone_number: str = Field(..., min_length=4, max_length=32)
    code: str = Field(..., min_length=1, max_length=12)

    model_config = ConfigDict(json_schema_extra={"example": {"phoneNumber": "+15551234567", "code": "123456"}})


class RegisterRequest(CamelModel):
    registration_token: str
    display_name: str = Field(..., min_length=2, max_length=80)
    profile: Dict[str, Any] = Field(default_factory=dict, description="Email, address and similar fields")


class RefreshRequest(CamelModel):
    credential: str


class UpdateProfileRequest(CamelModel):
    display_name: Optional[str] = Field(default=None, min_length=2, max_length=80)
    profile: Optional[Dict[str, Any]] = None


# ----------------------------------------------------------------------
# Responses
# ----------------------------------------------------------------------

class SendCodeResponse(CamelModel):
    success: bool = True
    expires_at: datetime


class VerifyCodeResponse(CamelModel):
    success: bool = True
    credential: Optional[str] = None
    identity_exists: bool
    identity_id: Optional[str] = None
    registration_token: Optional[str] = None
    state: AuthState
    reactivated: bool = False


class RegisterResponse(CamelModel):
    success: bool = True
    credential: str
    identity_id: str
    state: AuthState


class RefreshResponse(CamelModel):
    success: bool = True
    credential: str


class OtpStatusResponse(CamelModel):
    active: bool
    expires_in_seconds: int
    attempts_remaining: int
    resend_available_in_seconds: int


class OtpErrorResponse(CamelModel):
    """Body for user-correctable OTP failures."""
    success: bool = False
    error: str
    error_kind: str
    retry_after_seconds: Optional[int] = None
    attempts_remaining: Optional[int] = None
    retryable: Optional[bool] = None


class IdentityResponse(CamelModel):
    identity_id: str
    phone_number: str
    display_name: str
    deactivated: bool
    created_at: datetime
    updated_at: Optional[datetime] = None
    reactivated_at: Optional[datetime] = None
    profile: Dict[str, Any] = Field(default_factory=dict)


class SuccessResponse(CamelModel):
    success: bool = True
