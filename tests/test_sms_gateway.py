import asyncio
import json

import httpx
import pytest

from otpauth.services.sms_gateway import (
    ConsoleBackend,
    DispatchErrorKind,
    DispatchResult,
    Fast2SMSBackend,
    NoopBackend,
    SmsBackend,
    SmsGateway,
    TwilioBackend,
    classify_status,
    create_sms_backend,
)

pytestmark = pytest.mark.anyio


def twilio(handler):
    return TwilioBackend(
        account_sid="AC123",
        auth_token="secret",
        from_number="+15550000000",
        transport=httpx.MockTransport(handler),
    )


def fast2sms(handler, api_key="f2s-key"):
    return Fast2SMSBackend(
        api_key=api_key,
        base_url="https://www.fast2sms.com/dev/bulkV2",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.parametrize("status, kind", [
    (429, DispatchErrorKind.TRANSIENT),
    (500, DispatchErrorKind.TRANSIENT),
    (503, DispatchErrorKind.TRANSIENT),
    (400, DispatchErrorKind.PERMANENT),
    (401, DispatchErrorKind.PERMANENT),
    (404, DispatchErrorKind.PERMANENT),
])
def test_classify_status(status, kind):
    assert classify_status(status) == kind


async def test_twilio_success():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = request.content.decode()
        return httpx.Response(201, json={"sid": "SM42", "status": "queued"})

    result = await twilio(handler).send("+15551234567", "code 123456")

    assert result.success
    assert result.provider_message_id == "SM42"
    assert seen["url"].endswith("/Accounts/AC123/Messages.json")
    assert "To=%2B15551234567" in seen["body"]


async def test_twilio_throttling_is_transient():
    result = await twilio(lambda request: httpx.Response(429, json={"code": 20429, "message": "Too many requests"})).send(
        "+15551234567", "hi"
    )

    assert not result.success
    assert result.error_kind == DispatchErrorKind.TRANSIENT
    assert result.retryable


async def test_twilio_invalid_number_is_permanent():
    result = await twilio(lambda request: httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})).send(
        "+15551234567", "hi"
    )

    assert result.error_kind == DispatchErrorKind.PERMANENT
    assert not result.retryable


async def test_twilio_permanent_code_wins_over_status():
    result = await twilio(lambda request: httpx.Response(503, json={"code": 21610})).send("+15551234567", "hi")
    assert result.error_kind == DispatchErrorKind.PERMANENT


async def test_twilio_connection_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = await twilio(handler).send("+15551234567", "hi")

    assert result.error_kind == DispatchErrorKind.TRANSIENT
    assert result.provider_message_id is None


async def test_twilio_unconfigured_is_permanent():
    backend = TwilioBackend(account_sid=None, auth_token=None, from_number=None)

    result = await backend.send("+15551234567", "hi")

    assert not backend.is_configured()
    assert result.error_kind == DispatchErrorKind.PERMANENT


async def test_fast2sms_uses_otp_route_with_national_number():
    seen = {}

    def handler(request):
        seen["headers"] = request.headers
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"return": True, "request_id": "req-9", "message": ["SMS sent successfully."]})

    result = await fast2sms(handler).send("+919876543210", "Your code is 123456", code="123456")

    assert result.success
    assert result.provider_message_id == "req-9"
    assert seen["headers"]["authorization"] == "f2s-key"
    assert seen["payload"] == {"route": "otp", "numbers": "9876543210", "variables_values": "123456"}


async def test_fast2sms_rejects_non_indian_numbers_without_calling_api():
    def handler(request):
        raise AssertionError("API must not be called")

    result = await fast2sms(handler).send("+15551234567", "hi", code="123456")

    assert result.error_kind == DispatchErrorKind.PERMANENT


async def test_fast2sms_return_false_is_permanent():
    result = await fast2sms(lambda request: httpx.Response(200, json={"return": False, "message": "Invalid Numbers"})).send(
        "+919876543210", "hi", code="123456"
    )

    assert result.error_kind == DispatchErrorKind.PERMANENT


async def test_fast2sms_server_error_is_transient():
    result = await fast2sms(lambda request: httpx.Response(502, text="bad gateway")).send(
        "+919876543210", "hi", code="123456"
    )

    assert result.error_kind == DispatchErrorKind.TRANSIENT


async def test_gateway_passes_code_to_fast2sms():
    seen = {}

    def handler(request):
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"return": True, "request_id": "r1"})

    gateway = SmsGateway(fast2sms(handler))
    result = await gateway.send("+919876543210", "Your code is 654321", code="654321")

    assert result.success
    assert seen["payload"]["variables_values"] == "654321"
    assert gateway.sent_count == 1


async def test_gateway_hands_code_to_every_backend():
    class Recording(SmsBackend):
        name = "recording"

        def __init__(self):
            self.calls = []

        async def send(self, phone_number, message, code=None):
            self.calls.append((phone_number, message, code))
            return DispatchResult.delivered("r1")

    backend = Recording()
    await SmsGateway(backend).send("+15551234567", "Your code is 123456", code="123456")

    assert backend.calls == [("+15551234567", "Your code is 123456", "123456")]


async def test_gateway_timeout_is_transient():
    class Hanging(SmsBackend):
        name = "hanging"

        async def send(self, phone_number, message, code=None):
            await asyncio.sleep(5)

    result = await SmsGateway(Hanging(), timeout_seconds=0.05).send("+15551234567", "hi")

    assert not result.success
    assert result.error_kind == DispatchErrorKind.TRANSIENT


async def test_gateway_maps_backend_exceptions():
    class Broken(SmsBackend):
        name = "broken"

        async def send(self, phone_number, message, code=None):
            raise RuntimeError("boom")

    result = await SmsGateway(Broken()).send("+15551234567", "hi")

    assert result.error_kind == DispatchErrorKind.TRANSIENT
    assert result.error == "SMS dispatch error"


async def test_noop_backend_records_messages():
    backend = NoopBackend()

    await backend.send("+15551234567", "first")
    await backend.send("+15559876543", "other")
    await backend.send("+15551234567", "second")

    assert backend.last_message_to("+15551234567") == "second"
    assert backend.last_message_to("+10000000000") is None


async def test_console_backend_never_logs_the_message(caplog):
    caplog.set_level("INFO")

    result = await ConsoleBackend().send("+15551234567", "Your code is 987654")

    assert result.success
    assert "987654" not in caplog.text


def test_backend_factory(config):
    assert isinstance(create_sms_backend(config.model_copy(update={"SMS_BACKEND": "noop"})), NoopBackend)
    assert isinstance(create_sms_backend(config.model_copy(update={"SMS_BACKEND": "console"})), ConsoleBackend)
    assert isinstance(create_sms_backend(config.model_copy(update={"SMS_BACKEND": "twilio"})), TwilioBackend)
    assert isinstance(create_sms_backend(config.model_copy(update={"SMS_BACKEND": "fast2sms"})), Fast2SMSBackend)
