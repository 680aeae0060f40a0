import logging
from datetime import datetime, timedelta, timezone

import pytest

from otpauth.core.config import Settings, validate_settings
from otpauth.core.logging import PhoneRedactionFilter, mask_phone
from otpauth.utils.time_utils import seconds_until
from otpauth.utils.validation_utils import (
    generate_keywords,
    is_e164,
    normalize_phone_number,
    sanitize_input,
    validate_otp_format,
)


@pytest.mark.parametrize("raw, expected", [
    ("+15551234567", "+15551234567"),
    ("+1 (555) 123-4567", "+15551234567"),
    ("00919876543210", "+919876543210"),
    ("9876543210", "+919876543210"),
    ("919876543210", "+919876543210"),
    (" +44 20 7946 0958 ", "+442079460958"),
])
def test_normalize_phone_number(raw, expected):
    assert normalize_phone_number(raw) == expected


@pytest.mark.parametrize("raw", ["", "abc", "12345", "+0123456789", "+1555123456789012", "+1555+1234567", "555-CALL-NOW"])
def test_normalize_phone_number_rejects(raw):
    assert normalize_phone_number(raw) is None


def test_default_country_code_is_configurable():
    assert normalize_phone_number("5551234567", default_country_code="+1") == "+15551234567"


def test_is_e164():
    assert is_e164("+15551234567")
    assert not is_e164("15551234567")


def test_validate_otp_format():
    assert validate_otp_format("123456")
    assert validate_otp_format(" 123456 ")
    assert not validate_otp_format("12345")
    assert not validate_otp_format("12a456")
    assert validate_otp_format("1234", length=4)


def test_sanitize_input():
    assert sanitize_input("  <b>Asha</b>   Rao ") == "bAsha/b Rao"
    assert sanitize_input("x" * 50, max_length=10) == "x" * 10


def test_generate_keywords():
    assert generate_keywords("Asha Rao") == ["a", "as", "ash", "asha", "asha r", "asha ra", "asha rao", "rao"]
    assert generate_keywords("") == []


def test_mask_phone():
    assert mask_phone("+15551234567") == "+1555****567"
    assert mask_phone(None) == "unknown"


def test_redaction_filter_masks_numbers_in_message_text():
    record = logging.LogRecord("otpauth.test", logging.ERROR, __file__, 1, "Provider rejected %s", ("+15551234567",), None)

    assert PhoneRedactionFilter().filter(record)
    assert record.getMessage() == "Provider rejected +1555****567"


def test_seconds_until_rounds_up_and_never_negative():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert seconds_until(now + timedelta(seconds=1.2), now) == 2
    assert seconds_until(now - timedelta(seconds=5), now) == 0


def test_production_settings_are_strict():
    config = Settings(
        ENVIRONMENT="production",
        JWT_SECRET="a-real-secret",
        SMS_BACKEND="noop",
        REDIS_URL=None,
        USER_DIRECTORY_BACKEND="memory",
    )

    with pytest.raises(ValueError) as excinfo:
        validate_settings(config)

    message = str(excinfo.value)
    assert "SMS_BACKEND=noop" in message
    assert "REDIS_URL" in message


def test_default_secret_rejected_in_production():
    with pytest.raises(ValueError):
        Settings(ENVIRONMENT="production", JWT_SECRET="change-me-in-production")


def test_cooldown_must_be_shorter_than_expiry():
    with pytest.raises(ValueError):
        validate_settings(Settings(OTP_RESEND_COOLDOWN_SECONDS=600, OTP_EXPIRY_SECONDS=300))


def test_lock_timeout_defaults_above_sms_timeout():
    config = Settings(SMS_DISPATCH_TIMEOUT_SECONDS=10)

    assert config.kv_lock_timeout == 15
    validate_settings(config)


def test_lock_timeout_must_outlast_sms_dispatch():
    with pytest.raises(ValueError) as excinfo:
        validate_settings(Settings(SMS_DISPATCH_TIMEOUT_SECONDS=10, KV_LOCK_TIMEOUT_SECONDS=10))

    assert "KV_LOCK_TIMEOUT_SECONDS" in str(excinfo.value)
