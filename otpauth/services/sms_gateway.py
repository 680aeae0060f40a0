"""
otpauth/services/sms_gateway.py

Purpose: SMS dispatch for verification codes

- Interchangeable backends (Twilio, Fast2SMS, console, no-op) behind one send()
- Provider responses are translated into a uniform DispatchResult
- Failures are classified as transient (retry later) or permanent
- Every dispatch is bounded by a timeout; a timeout counts as a failure
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import httpx

from otpauth.core.config import Settings
from otpauth.core.logging import get_logger, mask_phone

logger = get_logger(__name__)


class DispatchErrorKind(str, Enum):
    TRANSIENT = "TRANSIENT"
    PERMANENT = "PERMANENT"


@dataclass
class DispatchResult:
    success: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[DispatchErrorKind] = None

    @classmethod
    def delivered(cls, provider_message_id: Optional[str] = None) -> "DispatchResult":
        return cls(success=True, provider_message_id=provider_message_id)

    @classmethod
    def failed(cls, error: str, error_kind: DispatchErrorKind) -> "DispatchResult":
        return cls(success=False, error=error, error_kind=error_kind)

    @property
    def retryable(self) -> bool:
        return self.error_kind == DispatchErrorKind.TRANSIENT


def classify_status(status_code: int) -> DispatchErrorKind:
    """Throttling and server-side errors are worth retrying; other client errors are not."""
    if status_code == 429 or status_code >= 500:
        return DispatchErrorKind.TRANSIENT
    return DispatchErrorKind.PERMANENT


class SmsBackend:
    """
    One SMS provider. ``message`` is the full text; ``code`` is passed as
    well for providers that fill the code into their own template.
    """

    name = "abstract"

    async def send(self, phone_number: str, message: str, code: Optional[str] = None) -> DispatchResult:
        raise NotImplementedError()

    def is_configured(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class NoopBackend(SmsBackend):
    """
    Delivers nothing and records every message in memory.
    Used by tests to read the code that would have been texted.
    """

    name = "noop"

    def __init__(self):
        self.outbox: List[Tuple[str, str]] = []

    async def send(self, phone_number: str, message: str, code: Optional[str] = None) -> DispatchResult:
        self.outbox.append((phone_number, message))
        return DispatchResult.delivered(f"noop_{len(self.outbox)}")

    def last_message_to(self, phone_number: str) -> Optional[str]:
        for to, message in reversed(self.outbox):
            if to == phone_number:
                return message
        return None


class ConsoleBackend(SmsBackend):
    name = "console"

    async def send(self, phone_number: str, message: str, code: Optional[str] = None) -> DispatchResult:
        # destination only, never the message body (it carries the code)
        logger.info(f"[SMS-Console] To={mask_phone(phone_number)} (code not logged)")
        return DispatchResult.delivered()


class _HttpBackend(SmsBackend):
    """Shared httpx plumbing for HTTP providers."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 10.0):
        self._transport = transport
        self._timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self._timeout)


class TwilioBackend(_HttpBackend):
    """Twilio Programmable Messaging (Messages.json)."""

    name = "twilio"

    # Twilio error codes that mean the destination itself is unusable
    PERMANENT_ERROR_CODES = {21211, 21214, 21408, 21610, 21612, 21614}

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
        **kwargs
    ):
        super().__init__(**kwargs)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.base_url = f"https://api.twilio.com/2010-04-01/Accounts/{self.account_sid}"

    def is_configured(self) -> bool:
        return bool(
            self.account_sid
            and self.auth_token
            and self.from_number
            and self.account_sid != "your_twilio_sid"
        )

    async def send(self, phone_number: str, message: str, code: Optional[str] = None) -> DispatchResult:
        if not self.is_configured():
            logger.error("Twilio credentials not configured; SMS not sent")
            return DispatchResult.failed("SMS backend not configured", DispatchErrorKind.PERMANENT)

        url = f"{self.base_url}/Messages.json"
        data = {
            "From": self.from_number,
            "To": phone_number,
            "Body": message
        }

        logger.info(f"📤 Sending Twilio SMS to {mask_phone(phone_number)}")

        try:
            async with self._client() as client:
                response = await client.post(
                    url,
                    data=data,
                    auth=(self.account_sid, self.auth_token),
                )
        except httpx.TimeoutException:
            logger.error("Twilio API timeout")
            return DispatchResult.failed("Twilio API timeout", DispatchErrorKind.TRANSIENT)
        except httpx.HTTPError as e:
            logger.error(f"Twilio transport error: {e}")
            return DispatchResult.failed("Twilio unreachable", DispatchErrorKind.TRANSIENT)

        if response.status_code in (200, 201):
            result = response.json()
            logger.info(f"✅ Message sent: SID={result.get('sid')}")
            return DispatchResult.delivered(result.get("sid"))

        try:
            body = response.json()
        except ValueError:
            body = {}
        twilio_code = body.get("code")
        logger.error(f"❌ Twilio API error: {response.status_code} code={twilio_code} - {body.get('message')}")

        kind = classify_status(response.status_code)
        if twilio_code in self.PERMANENT_ERROR_CODES:
            kind = DispatchErrorKind.PERMANENT
        return DispatchResult.failed(f"Twilio API error: {response.status_code}", kind)


class Fast2SMSBackend(_HttpBackend):
    """
    Fast2SMS OTP route. Only Indian mobile numbers are deliverable; the API
    expects the 10-digit national number.
    """

    name = "fast2sms"

    def __init__(self, api_key: Optional[str], base_url: str, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.base_url = base_url

    def is_configured(self) -> bool:
        return bool(self.api_key)

    @staticmethod
    def national_number(phone_number: str) -> Optional[str]:
        if not phone_number.startswith("+91"):
            return None
        digits = phone_number[3:]
        return digits if len(digits) == 10 and digits.isdigit() else None

    async def send(self, phone_number: str, message: str, code: Optional[str] = None) -> DispatchResult:
        if not self.is_configured():
            logger.error("Fast2SMS API key not configured; SMS not sent")
            return DispatchResult.failed("SMS backend not configured", DispatchErrorKind.PERMANENT)

        number = self.national_number(phone_number)
        if number is None:
            return DispatchResult.failed("Number not deliverable via Fast2SMS", DispatchErrorKind.PERMANENT)

        # The OTP route takes the code as a template variable, not free text
        payload = {"route": "otp", "numbers": number}
        if code:
            payload["variables_values"] = code
        else:
            payload["route"] = "q"
            payload["message"] = message

        try:
            async with self._client() as client:
                response = await client.post(
                    self.base_url,
                    json=payload,
                    headers={"authorization": self.api_key},
                )
        except httpx.TimeoutException:
            logger.error("Fast2SMS API timeout")
            return DispatchResult.failed("Fast2SMS API timeout", DispatchErrorKind.TRANSIENT)
        except httpx.HTTPError as e:
            logger.error(f"Fast2SMS transport error: {e}")
            return DispatchResult.failed("Fast2SMS unreachable", DispatchErrorKind.TRANSIENT)

        if response.status_code // 100 != 2:
            logger.warning(f"Fast2SMS send failed: status={response.status_code} body={response.text[:200]}")
            return DispatchResult.failed(
                f"Fast2SMS API error: {response.status_code}",
                classify_status(response.status_code),
            )

        try:
            body = response.json()
        except ValueError:
            body = {}
        if body.get("return") is True:
            return DispatchResult.delivered(body.get("request_id"))

        logger.warning(f"Fast2SMS rejected message: {str(body.get('message'))[:200]}")
        return DispatchResult.failed("Fast2SMS rejected the message", DispatchErrorKind.PERMANENT)


@dataclass
class SmsGateway:
    """
    Front door for every dispatch. Adds the timeout and makes sure nothing
    but a DispatchResult comes back.
    """

    backend: SmsBackend
    timeout_seconds: float = 10.0
    sent_count: int = field(default=0, init=False)

    @property
    def backend_name(self) -> str:
        return self.backend.name

    async def send(self, phone_number: str, message: str, code: Optional[str] = None) -> DispatchResult:
        try:
            result = await asyncio.wait_for(
                self.backend.send(phone_number, message, code=code),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"SMS dispatch via {self.backend_name} timed out after {self.timeout_seconds}s"
            )
            return DispatchResult.failed("SMS dispatch timed out", DispatchErrorKind.TRANSIENT)
        except Exception as e:
            logger.error(f"SMS backend {self.backend_name} raised: {e}", exc_info=True)
            return DispatchResult.failed("SMS dispatch error", DispatchErrorKind.TRANSIENT)

        if result.success:
            self.sent_count += 1
        return result

    async def close(self) -> None:
        await self.backend.close()


def create_sms_backend(config: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> SmsBackend:
    """
    Selects the backend named by SMS_BACKEND.
    """
    backend = config.SMS_BACKEND
    timeout = config.SMS_DISPATCH_TIMEOUT_SECONDS

    if backend == "twilio":
        return TwilioBackend(
            account_sid=config.TWILIO_ACCOUNT_SID,
            auth_token=config.TWILIO_AUTH_TOKEN,
            from_number=config.TWILIO_FROM_NUMBER,
            transport=transport,
            timeout=timeout,
        )
    if backend == "fast2sms":
        return Fast2SMSBackend(
            api_key=config.FAST2SMS_API_KEY,
            base_url=config.FAST2SMS_BASE_URL,
            transport=transport,
            timeout=timeout,
        )
    if backend == "noop":
        return NoopBackend()
    return ConsoleBackend()
