"""
otpauth/services/token_service.py

Purpose: Session credentials

- Mints HS256 access credentials bound to a directory identity
- Stateless validation and refresh within a grace window
- Short-lived registration tickets for verified numbers without an identity
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from otpauth.core.config import Settings, settings as default_settings
from otpauth.core.exceptions import CredentialMintError, InvalidCredentialError
from otpauth.core.logging import get_logger
from otpauth.utils.time_utils import Clock, utc_now

logger = get_logger(__name__)

ALGORITHM = "HS256"
ACCESS_TYPE = "access"
REGISTRATION_TYPE = "registration"


@dataclass(frozen=True)
class CredentialClaims:
    identity_id: str
    phone_number: str
    issued_at: datetime
    expires_at: datetime
    jti: str


def _epoch(dt: datetime) -> int:
    return int(dt.timestamp())


def _from_epoch(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class TokenService:
    def __init__(self, config: Settings = default_settings, clock: Clock = utc_now):
        self.config = config
        self.clock = clock

    @property
    def secret(self) -> Optional[str]:
        return self.config.JWT_SECRET or None

    def _encode(self, claims: Dict[str, Any]) -> str:
        if not self.secret:
            raise CredentialMintError(details="JWT_SECRET is not configured")
        try:
            return jwt.encode(claims, self.secret, algorithm=ALGORITHM)
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            raise CredentialMintError(details=f"Signing failed: {e}") from e

    def _decode(self, token: str, expected_type: str, grace_seconds: int = 0) -> Dict[str, Any]:
        """
        Verifies signature, issuer, audience and type. Expiry is checked here
        against the service clock, allowing ``grace_seconds`` past ``exp``.
        """
        if not self.secret:
            raise InvalidCredentialError(details="JWT_SECRET is not configured")
        if not token:
            raise InvalidCredentialError(details="empty token")

        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[ALGORITHM],
                audience=self.config.JWT_AUDIENCE,
                issuer=self.config.JWT_ISSUER,
                options={
                    "require": ["exp", "iat", "typ", "phone_number"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.PyJWTError as e:
            raise InvalidCredentialError(details=f"{type(e).__name__}: {e}") from e

        if payload.get("typ") != expected_type:
            raise InvalidCredentialError(details=f"unexpected token type {payload.get('typ')!r}")

        expires_at = _from_epoch(payload["exp"])
        if self.clock() >= expires_at + timedelta(seconds=grace_seconds):
            raise InvalidCredentialError(details="token expired")

        return payload

    # ------------------------------------------------------------------
    # Access credentials
    # ------------------------------------------------------------------

    def mint(self, identity_id: str, phone_number: str) -> str:
        """
        Signs a credential whose subject is exactly ``identity_id``.

        Raises:
            CredentialMintError: no signing secret or signing failed
        """
        if not identity_id:
            raise CredentialMintError(details="refusing to mint a credential without an identity id")

        now = self.clock()
        claims = {
            "iss": self.config.JWT_ISSUER,
            "aud": self.config.JWT_AUDIENCE,
            "iat": _epoch(now),
            "exp": _epoch(now) + self.config.ACCESS_TOKEN_TTL_SECONDS,
            "sub": identity_id,
            "phone_number": phone_number,
            "jti": uuid.uuid4().hex,
            "typ": ACCESS_TYPE,
        }
        token = self._encode(claims)
        logger.debug(f"Credential minted for {identity_id}")
        return token

    def validate(self, credential: str) -> CredentialClaims:
        payload = self._decode(credential, ACCESS_TYPE)
        return self._claims(payload)

    def refresh(self, credential: str) -> str:
        """
        Re-mints an access credential that is still valid or expired for
        less than REFRESH_GRACE_SECONDS. Subject and phone claim carry over.
        """
        payload = self._decode(credential, ACCESS_TYPE, grace_seconds=self.config.REFRESH_GRACE_SECONDS)
        claims = self._claims(payload)
        logger.info(f"Credential refreshed for {claims.identity_id}")
        return self.mint(claims.identity_id, claims.phone_number)

    @staticmethod
    def _claims(payload: Dict[str, Any]) -> CredentialClaims:
        subject = payload.get("sub")
        if not subject:
            raise InvalidCredentialError(details="credential has no subject")
        return CredentialClaims(
            identity_id=str(subject),
            phone_number=str(payload["phone_number"]),
            issued_at=_from_epoch(payload["iat"]),
            expires_at=_from_epoch(payload["exp"]),
            jti=str(payload.get("jti", "")),
        )

    # ------------------------------------------------------------------
    # Registration tickets
    # ------------------------------------------------------------------

    def mint_registration_ticket(self, phone_number: str) -> str:
        """Proof that ``phone_number`` passed OTP verification. Carries no identity."""
        now = self.clock()
        claims = {
            "iss": self.config.JWT_ISSUER,
            "aud": self.config.JWT_AUDIENCE,
            "iat": _epoch(now),
            "exp": _epoch(now) + self.config.REGISTRATION_TOKEN_TTL_SECONDS,
            "phone_number": phone_number,
            "jti": uuid.uuid4().hex,
            "typ": REGISTRATION_TYPE,
        }
        return self._encode(claims)

    def validate_registration_ticket(self, ticket: str) -> str:
        payload = self._decode(ticket, REGISTRATION_TYPE)
        return str(payload["phone_number"])
