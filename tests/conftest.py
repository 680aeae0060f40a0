import os

# Settings are read at import time
os.environ["ENVIRONMENT"] = "development"
os.environ["USER_DIRECTORY_BACKEND"] = "memory"
os.environ["SMS_BACKEND"] = "noop"
os.environ["JWT_SECRET"] = "test-secret-with-enough-length-for-hs256"
os.environ["OTP_HMAC_KEY"] = "test-hmac-key"
os.environ.pop("REDIS_URL", None)

from datetime import datetime, timedelta, timezone

import pytest

from otpauth.core.config import Settings
from otpauth.db.kv_store import InMemoryKeyValueStore
from otpauth.services.sms_gateway import NoopBackend, SmsGateway


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 15, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds=0, minutes=0):
        self.now = self.now + timedelta(seconds=seconds, minutes=minutes)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def config():
    return Settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv(clock):
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def sms():
    return NoopBackend()


@pytest.fixture
def gateway(sms):
    return SmsGateway(sms, timeout_seconds=2)
