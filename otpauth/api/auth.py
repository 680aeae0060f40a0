"""
otpauth/api/auth.py

Purpose: Phone login endpoints

- send-code / verify-code / register / refresh
- otp-status countdowns and cancelling an active code
- OTP-layer failures become 4xx/5xx bodies with user-facing messages
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from otpauth.api.deps import get_container, get_flow
from otpauth.core.container import ServiceContainer
from otpauth.core.exceptions import ErrorKind
from otpauth.core.logging import get_logger
from otpauth.flow.dispatcher import AuthFlow
from otpauth.schemas.auth import (
    OtpErrorResponse,
    OtpStatusResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
    SuccessResponse,
    SendCodeRequest,
    SendCodeResponse,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from otpauth.services.otp_service import OtpResult

logger = get_logger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


STATUS_BY_KIND = {
    ErrorKind.INVALID_PHONE_FORMAT: 400,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.RESEND_TOO_SOON: 429,
    ErrorKind.SESSION_BUSY: 429,
    ErrorKind.SMS_DISPATCH_FAILED: 502,
    ErrorKind.NO_ACTIVE_SESSION: 404,
    ErrorKind.EXPIRED: 410,
    ErrorKind.INVALID_CODE: 401,
    ErrorKind.MAX_ATTEMPTS_EXCEEDED: 401,
}


def otp_error_response(result: OtpResult) -> JSONResponse:
    body = OtpErrorResponse(
        error=result.error or "Request failed",
        error_kind=result.error_kind.value,
        retry_after_seconds=result.retry_after_seconds,
        attempts_remaining=result.attempts_remaining,
        retryable=result.retryable,
    )
    headers = None
    if result.retry_after_seconds:
        headers = {"Retry-After": str(result.retry_after_seconds)}
    return JSONResponse(
        status_code=STATUS_BY_KIND.get(result.error_kind, 400),
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


@router.post(
    "/send-code",
    response_model=SendCodeResponse,
    responses={400: {"model": OtpErrorResponse}, 429: {"model": OtpErrorResponse}, 502: {"model": OtpErrorResponse}},
)
async def send_code(payload: SendCodeRequest, flow: AuthFlow = Depends(get_flow)):
    """
    Sends a verification code to the phone number.
    """
    result = await flow.request_code(payload.phone_number, is_resend=payload.is_resend)
    if not result.success:
        return otp_error_response(result)
    return SendCodeResponse(expires_at=result.expires_at)


@router.post(
    "/verify-code",
    response_model=VerifyCodeResponse,
    response_model_exclude_none=True,
    responses={
        400: {"model": OtpErrorResponse},
        401: {"model": OtpErrorResponse},
        404: {"model": OtpErrorResponse},
        410: {"model": OtpErrorResponse},
        429: {"model": OtpErrorResponse},
    },
)
async def verify_code(payload: VerifyCodeRequest, flow: AuthFlow = Depends(get_flow)):
    """
    Verifies the code. Returning users receive a credential; new users
    receive a registration token for POST /auth/register.
    """
    outcome = await flow.verify_and_login(payload.phone_number, payload.code)
    if not outcome.success:
        return otp_error_response(outcome.otp_result)

    return VerifyCodeResponse(
        credential=outcome.credential,
        identity_exists=outcome.identity_exists,
        identity_id=outcome.identity_id,
        registration_token=outcome.registration_token,
        state=outcome.state,
        reactivated=outcome.reactivated,
    )


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(payload: RegisterRequest, flow: AuthFlow = Depends(get_flow)):
    """
    Creates the identity for a verified phone number and signs it in.
    """
    outcome = await flow.complete_registration(
        payload.registration_token,
        payload.display_name,
        payload.profile,
    )
    return RegisterResponse(
        credential=outcome.credential,
        identity_id=outcome.identity_id,
        state=outcome.state,
    )


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(payload: RefreshRequest, flow: AuthFlow = Depends(get_flow)):
    credential = await flow.refresh(payload.credential)
    return RefreshResponse(credential=credential)


@router.get(
    "/otp-status",
    response_model=OtpStatusResponse,
    responses={400: {"model": OtpErrorResponse}},
)
async def otp_status(
    phone_number: str = Query(..., alias="phoneNumber"),
    container: ServiceContainer = Depends(get_container),
):
    """
    Countdowns for the verification screen: code lifetime, attempts left,
    and seconds until a resend is accepted.
    """
    status = await container.otp.get_status(phone_number)
    if status is None:
        return otp_error_response(OtpResult.fail(
            ErrorKind.INVALID_PHONE_FORMAT,
            "Enter a valid phone number with country code",
        ))

    return OtpStatusResponse(
        active=status.active,
        expires_in_seconds=status.expires_in_seconds,
        attempts_remaining=status.attempts_remaining,
        resend_available_in_seconds=status.resend_available_in_seconds,
    )


@router.delete(
    "/otp-session",
    response_model=SuccessResponse,
    responses={400: {"model": OtpErrorResponse}, 404: {"model": OtpErrorResponse}, 429: {"model": OtpErrorResponse}},
)
async def clear_otp_session(
    phone_number: str = Query(..., alias="phoneNumber"),
    container: ServiceContainer = Depends(get_container),
):
    """
    Cancels the active code for a number. The resend cooldown still applies.
    """
    result = await container.otp.clear_session(phone_number)
    if not result.success:
        return otp_error_response(result)
    return SuccessResponse()
