"""
otpauth/services/otp_service.py

Purpose: OTP session management

- Generates codes and stores one session per phone number
- Enforces expiry, attempt limits, resend cooldown and hourly rate limit
- Rolls a session back when the SMS never left
- Periodic cleanup of expired sessions
"""

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from otpauth.core.config import Settings, settings as default_settings
from otpauth.core.exceptions import ErrorKind
from otpauth.core.logging import get_logger, LogContext
from otpauth.db.kv_store import KeyValueStore, LockUnavailableError
from otpauth.models.otp_session import OtpSession, RateLimitRecord
from otpauth.services.sms_gateway import SmsGateway
from otpauth.utils.time_utils import Clock, utc_now, seconds_until
from otpauth.utils.validation_utils import normalize_phone_number, validate_otp_format

logger = get_logger(__name__)

SESSION_PREFIX = "otp:session:"
RATE_LIMIT_PREFIX = "otp:ratelimit:"

# Suggested wait when another request holds the number's lock
BUSY_RETRY_AFTER_SECONDS = 1


@dataclass
class OtpResult:
    success: bool
    phone_number: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    expires_at: Optional[datetime] = None
    retry_after_seconds: Optional[int] = None
    attempts_remaining: Optional[int] = None
    retryable: Optional[bool] = None

    @classmethod
    def fail(cls, kind: ErrorKind, error: str, **kwargs) -> "OtpResult":
        return cls(success=False, error_kind=kind, error=error, **kwargs)


@dataclass
class OtpStatus:
    active: bool
    expires_in_seconds: int = 0
    attempts_remaining: int = 0
    resend_available_in_seconds: int = 0


def build_otp_message(code: str, sender_name: str, expiry_seconds: int) -> str:
    minutes = max(1, expiry_seconds // 60)
    return (
        f"Your {sender_name} verification code is: {code}. "
        f"Valid for {minutes} minutes. Do not share this code."
    )


def invalid_phone() -> OtpResult:
    return OtpResult.fail(ErrorKind.INVALID_PHONE_FORMAT, "Enter a valid phone number with country code")


def session_busy(phone_number: str) -> OtpResult:
    return OtpResult.fail(
        ErrorKind.SESSION_BUSY,
        "Another request for this number is in progress. Try again in a moment.",
        phone_number=phone_number,
        retry_after_seconds=BUSY_RETRY_AFTER_SECONDS,
        retryable=True,
    )


class OtpSessionManager:
    """
    Owns OTP sessions and rate-limit records.

    Every operation for one phone number runs under that number's store lock,
    so concurrent verifications can never both spend the last attempt. When
    the lock cannot be taken in time the caller gets SESSION_BUSY.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        gateway: SmsGateway,
        config: Settings = default_settings,
        clock: Clock = utc_now,
    ):
        self.kv = kv
        self.gateway = gateway
        self.config = config
        self.clock = clock

    # ------------------------------------------------------------------
    # Keys and serialization
    # ------------------------------------------------------------------

    @staticmethod
    def _session_key(phone_number: str) -> str:
        return f"{SESSION_PREFIX}{phone_number}"

    @staticmethod
    def _rate_limit_key(phone_number: str) -> str:
        return f"{RATE_LIMIT_PREFIX}{phone_number}"

    def _lock(self, phone_number: str):
        return self.kv.lock(f"otp:{phone_number}")

    def canonical_phone(self, phone_number: str) -> Optional[str]:
        return normalize_phone_number(phone_number, self.config.DEFAULT_COUNTRY_CODE)

    def hash_code(self, phone_number: str, code: str) -> str:
        # Bound to the phone number so a hash is useless for any other session
        message = f"{phone_number}:{code}".encode()
        return hmac.new(self.config.otp_hmac_key.encode(), message, hashlib.sha256).hexdigest()

    def generate_code(self) -> str:
        return "".join(secrets.choice("0123456789") for _ in range(self.config.OTP_LENGTH))

    async def _load_session(self, phone_number: str) -> Optional[OtpSession]:
        raw = await self.kv.get(self._session_key(phone_number))
        return OtpSession.model_validate_json(raw) if raw else None

    async def _save_session(self, session: OtpSession, now: datetime) -> None:
        ttl = seconds_until(session.expires_at, now) + self.config.OTP_EXPIRED_RETENTION_SECONDS
        await self.kv.set(self._session_key(session.phone_number), session.model_dump_json(), ttl_seconds=ttl)

    async def _load_rate_limit(self, phone_number: str, now: datetime) -> RateLimitRecord:
        raw = await self.kv.get(self._rate_limit_key(phone_number))
        record = RateLimitRecord.model_validate_json(raw) if raw else RateLimitRecord(phone_number=phone_number)
        return record.prune(now, self.config.OTP_RATE_LIMIT_WINDOW_SECONDS)

    async def _save_rate_limit(self, record: RateLimitRecord) -> None:
        await self.kv.set(
            self._rate_limit_key(record.phone_number),
            record.model_dump_json(),
            ttl_seconds=self.config.OTP_RATE_LIMIT_WINDOW_SECONDS,
        )

    def _rate_limit_retry_after(self, record: RateLimitRecord, now: datetime) -> int:
        oldest = record.send_timestamps[0]
        leaves_window = oldest + timedelta(seconds=self.config.OTP_RATE_LIMIT_WINDOW_SECONDS)
        return max(1, seconds_until(leaves_window, now))

    def _cooldown_remaining(self, record: RateLimitRecord, now: datetime) -> int:
        last_sent = record.last_sent_at
        if last_sent is None:
            return 0
        available_at = last_sent + timedelta(seconds=self.config.OTP_RESEND_COOLDOWN_SECONDS)
        return seconds_until(available_at, now)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def send_code(self, phone_number: str, is_resend: bool = False) -> OtpResult:
        """
        Issues a fresh code and texts it.

        Args:
            phone_number: Raw phone number from the client
            is_resend: Client hint only; cooldown applies to every send after the first

        Returns:
            OtpResult with expires_at on success, or an error kind
            (INVALID_PHONE_FORMAT, RATE_LIMITED, RESEND_TOO_SOON,
            SMS_DISPATCH_FAILED, SESSION_BUSY)
        """
        canonical = self.canonical_phone(phone_number)
        if canonical is None:
            return invalid_phone()

        with LogContext(phone=canonical, sms_backend=self.gateway.backend_name):
            try:
                async with self._lock(canonical):
                    return await self._send_locked(canonical, is_resend)
            except LockUnavailableError:
                logger.warning("Send refused, number is locked by another request")
                return session_busy(canonical)

    async def _send_locked(self, canonical: str, is_resend: bool) -> OtpResult:
        now = self.clock()
        record = await self._load_rate_limit(canonical, now)

        if len(record.send_timestamps) >= self.config.OTP_RATE_LIMIT_MAX_SENDS:
            retry_after = self._rate_limit_retry_after(record, now)
            logger.warning(f"Rate limit reached ({len(record.send_timestamps)} sends in window)")
            return OtpResult.fail(
                ErrorKind.RATE_LIMITED,
                f"Too many codes requested. Try again in {retry_after} seconds.",
                phone_number=canonical,
                retry_after_seconds=retry_after,
            )

        cooldown = self._cooldown_remaining(record, now)
        if cooldown > 0:
            logger.info(f"Resend refused, cooldown {cooldown}s (resend={is_resend})")
            return OtpResult.fail(
                ErrorKind.RESEND_TOO_SOON,
                f"Please wait {cooldown} seconds before requesting another code.",
                phone_number=canonical,
                retry_after_seconds=cooldown,
            )

        previous = await self._load_session(canonical)
        if previous is not None and previous.is_expired(now):
            previous = None

        code = self.generate_code()
        session = OtpSession(
            phone_number=canonical,
            code_hash=self.hash_code(canonical, code),
            issued_at=now,
            expires_at=now + timedelta(seconds=self.config.OTP_EXPIRY_SECONDS),
            attempt_count=0,
            max_attempts=self.config.OTP_MAX_ATTEMPTS,
            last_sent_at=now,
        )
        await self._save_session(session, now)

        message = build_otp_message(code, self.config.SMS_SENDER_NAME, self.config.OTP_EXPIRY_SECONDS)
        result = await self.gateway.send(canonical, message, code=code)

        if not result.success:
            await self._rollback(session, previous)
            logger.error(
                f"SMS dispatch failed ({result.error_kind.value if result.error_kind else 'unknown'}): "
                f"{result.error}; session rolled back"
            )
            return OtpResult.fail(
                ErrorKind.SMS_DISPATCH_FAILED,
                "We couldn't send the code. Please try again.",
                phone_number=canonical,
                retryable=result.retryable,
            )

        record.send_timestamps.append(now)
        await self._save_rate_limit(record)

        logger.info(f"OTP sent (resend={is_resend}, message_id={result.provider_message_id})")
        return OtpResult(success=True, phone_number=canonical, expires_at=session.expires_at)

    async def _rollback(self, failed: OtpSession, previous: Optional[OtpSession]) -> None:
        """Puts back the last delivered session, or removes the undelivered one."""
        if previous is not None:
            await self._save_session(previous, self.clock())
            logger.debug("Previous OTP session restored")
        else:
            await self.kv.delete(self._session_key(failed.phone_number))

    async def verify_code(self, phone_number: str, submitted_code: str) -> OtpResult:
        """
        Checks a submitted code against the active session.

        A submission that is not OTP_LENGTH digits is a wrong guess like any
        other and spends an attempt.

        Returns:
            OtpResult; success deletes the session. Failures:
            NO_ACTIVE_SESSION, EXPIRED, INVALID_CODE, MAX_ATTEMPTS_EXCEEDED,
            SESSION_BUSY
        """
        canonical = self.canonical_phone(phone_number)
        if canonical is None:
            return invalid_phone()

        with LogContext(phone=canonical):
            try:
                async with self._lock(canonical):
                    return await self._verify_locked(canonical, submitted_code)
            except LockUnavailableError:
                logger.warning("Verification refused, number is locked by another request")
                return session_busy(canonical)

    async def _verify_locked(self, canonical: str, submitted_code: str) -> OtpResult:
        now = self.clock()
        session = await self._load_session(canonical)

        if session is None:
            return OtpResult.fail(
                ErrorKind.NO_ACTIVE_SESSION,
                "No code is active for this number. Request a new code.",
                phone_number=canonical,
            )

        if session.is_expired(now):
            await self.kv.delete(self._session_key(canonical))
            logger.info("OTP expired before verification")
            return OtpResult.fail(
                ErrorKind.EXPIRED,
                "This code has expired. Request a new code.",
                phone_number=canonical,
            )

        submitted = (submitted_code or "").strip()
        matches = validate_otp_format(submitted, self.config.OTP_LENGTH) and hmac.compare_digest(
            self.hash_code(canonical, submitted), session.code_hash
        )
        if matches:
            await self.kv.delete(self._session_key(canonical))
            logger.info("OTP verified")
            return OtpResult(success=True, phone_number=canonical)

        session.attempt_count += 1
        if session.attempt_count >= session.max_attempts:
            await self.kv.delete(self._session_key(canonical))
            logger.warning(f"OTP attempts exhausted ({session.attempt_count}/{session.max_attempts})")
            return OtpResult.fail(
                ErrorKind.MAX_ATTEMPTS_EXCEEDED,
                "Too many incorrect attempts. Request a new code.",
                phone_number=canonical,
                attempts_remaining=0,
            )

        await self._save_session(session, now)
        remaining = session.attempts_remaining
        logger.info(f"Incorrect OTP, {remaining} attempts remaining")
        return OtpResult.fail(
            ErrorKind.INVALID_CODE,
            f"Incorrect code. {remaining} attempt{'s' if remaining != 1 else ''} remaining.",
            phone_number=canonical,
            attempts_remaining=remaining,
        )

    async def get_status(self, phone_number: str) -> Optional[OtpStatus]:
        """
        Countdowns for the client: code lifetime, attempts left and when a
        resend will be accepted. None for an invalid phone number.
        """
        canonical = self.canonical_phone(phone_number)
        if canonical is None:
            return None

        now = self.clock()
        session = await self._load_session(canonical)
        record = await self._load_rate_limit(canonical, now)

        resend_in = self._cooldown_remaining(record, now)
        if len(record.send_timestamps) >= self.config.OTP_RATE_LIMIT_MAX_SENDS:
            resend_in = max(resend_in, self._rate_limit_retry_after(record, now))

        if session is None or session.is_expired(now):
            return OtpStatus(active=False, resend_available_in_seconds=resend_in)

        return OtpStatus(
            active=True,
            expires_in_seconds=seconds_until(session.expires_at, now),
            attempts_remaining=session.attempts_remaining,
            resend_available_in_seconds=resend_in,
        )

    async def clear_session(self, phone_number: str) -> OtpResult:
        """
        Cancels the active code, e.g. when the user backs out of the
        verification screen. Cooldown and rate limit are unaffected.
        """
        canonical = self.canonical_phone(phone_number)
        if canonical is None:
            return invalid_phone()

        with LogContext(phone=canonical):
            try:
                async with self._lock(canonical):
                    removed = await self.kv.delete(self._session_key(canonical))
            except LockUnavailableError:
                return session_busy(canonical)

            if not removed:
                return OtpResult.fail(
                    ErrorKind.NO_ACTIVE_SESSION,
                    "No code is active for this number.",
                    phone_number=canonical,
                )
            logger.info("OTP session cleared")
            return OtpResult(success=True, phone_number=canonical)

    async def cleanup_expired(self) -> int:
        """
        Removes sessions whose expiry has passed. Numbers locked by a live
        request are left for the next sweep.

        Returns:
            Number of sessions removed
        """
        removed = 0
        for key in await self.kv.scan_keys(SESSION_PREFIX):
            phone_number = key[len(SESSION_PREFIX):]
            try:
                async with self._lock(phone_number):
                    session = await self._load_session(phone_number)
                    if session is not None and session.is_expired(self.clock()):
                        await self.kv.delete(key)
                        removed += 1
            except LockUnavailableError:
                continue

        if removed:
            logger.info(f"Cleaned up {removed} expired OTP sessions")
        return removed

    async def active_session_count(self) -> int:
        return len(await self.kv.scan_keys(SESSION_PREFIX))
