"""
otpauth/flow/dispatcher.py

Purpose: Single entry point for the login flow

- request code -> verify -> resolve identity -> credential or registration ticket
- Drives the AuthState machine; callers never branch on "resend" or
  "existing user" themselves
- Refresh of existing credentials
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from otpauth.core.logging import get_logger, LogContext
from otpauth.flow.states import AuthState, get_state_metadata, is_valid_transition
from otpauth.services.identity_service import IdentityReconciliationService
from otpauth.services.otp_service import OtpResult, OtpSessionManager
from otpauth.services.token_service import TokenService

logger = get_logger(__name__)


@dataclass
class LoginOutcome:
    """
    Result of a verification or registration step.

    On failure ``otp_result`` carries the OTP-layer error and ``state`` stays
    ANONYMOUS.
    """
    success: bool
    state: AuthState
    phone_number: Optional[str] = None
    identity_exists: bool = False
    identity_id: Optional[str] = None
    credential: Optional[str] = None
    registration_token: Optional[str] = None
    reactivated: bool = False
    otp_result: Optional[OtpResult] = None


def _transition(from_state: AuthState, to_state: AuthState) -> AuthState:
    if not is_valid_transition(from_state, to_state):
        logger.error(f"Invalid auth state transition attempted: {from_state} -> {to_state}")
        raise ValueError(f"Invalid auth state transition: {from_state} -> {to_state}")
    metadata = get_state_metadata(to_state)
    logger.debug(f"Auth state: {from_state.value} -> {to_state.value} ({metadata.description})")
    return to_state


class AuthFlow:
    def __init__(
        self,
        otp: OtpSessionManager,
        identities: IdentityReconciliationService,
        tokens: TokenService,
    ):
        self.otp = otp
        self.identities = identities
        self.tokens = tokens

    async def request_code(self, phone_number: str, is_resend: bool = False) -> OtpResult:
        return await self.otp.send_code(phone_number, is_resend=is_resend)

    async def verify_and_login(self, phone_number: str, code: str) -> LoginOutcome:
        """
        Verifies the code and hands the phone number to reconciliation.

        Returning users come back AUTHENTICATED with a credential whose
        subject is their directory id. New users come back
        PENDING_REGISTRATION with a registration ticket.
        """
        result = await self.otp.verify_code(phone_number, code)
        if not result.success:
            return LoginOutcome(
                success=False,
                state=AuthState.ANONYMOUS,
                phone_number=result.phone_number,
                otp_result=result,
            )

        phone = result.phone_number
        with LogContext(phone=phone, state=AuthState.ANONYMOUS.value):
            resolution = await self.identities.resolve_identity(phone)

            if not resolution.exists:
                state = _transition(AuthState.ANONYMOUS, AuthState.PENDING_REGISTRATION)
                ticket = self.tokens.mint_registration_ticket(phone)
                logger.info("Login verified, registration required")
                return LoginOutcome(
                    success=True,
                    state=state,
                    phone_number=phone,
                    identity_exists=False,
                    registration_token=ticket,
                )

            state = _transition(AuthState.ANONYMOUS, AuthState.AUTHENTICATED)
            credential = self.tokens.mint(resolution.identity_id, phone)
            logger.info(f"Login complete for {resolution.identity_id} (reactivated={resolution.reactivated})")
            return LoginOutcome(
                success=True,
                state=state,
                phone_number=phone,
                identity_exists=True,
                identity_id=resolution.identity_id,
                credential=credential,
                reactivated=resolution.reactivated,
            )

    async def complete_registration(
        self,
        registration_token: str,
        display_name: str,
        profile_fields: Optional[Dict[str, Any]] = None,
    ) -> LoginOutcome:
        """
        Creates the identity for a verified phone number and signs in.

        Raises:
            InvalidCredentialError: bad or expired registration ticket
            DuplicateIdentityError: the number was registered in the meantime
        """
        phone = self.tokens.validate_registration_ticket(registration_token)

        with LogContext(phone=phone, state=AuthState.PENDING_REGISTRATION.value):
            identity = await self.identities.register_identity(phone, display_name, profile_fields)
            state = _transition(AuthState.PENDING_REGISTRATION, AuthState.AUTHENTICATED)
            credential = self.tokens.mint(identity.identity_id, phone)
            logger.info(f"Registration complete for {identity.identity_id}")
            return LoginOutcome(
                success=True,
                state=state,
                phone_number=phone,
                identity_exists=True,
                identity_id=identity.identity_id,
                credential=credential,
            )

    async def refresh(self, credential: str) -> str:
        return self.tokens.refresh(credential)
