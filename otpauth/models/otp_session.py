"""
otpauth/models/otp_session.py

Purpose: Short-lived OTP state kept in the key-value store

- OtpSession: one active code per phone number
- RateLimitRecord: sliding window of recent sends per phone number
"""

from datetime import datetime, timedelta
from typing import List

from pydantic import BaseModel, Field


class OtpSession(BaseModel):
    phone_number: str = Field(..., description="Canonical E.164 phone number (key)")
    code_hash: str = Field(..., description="HMAC-SHA256 of the code; the code itself is never stored")
    issued_at: datetime
    expires_at: datetime
    attempt_count: int = 0
    max_attempts: int
    last_sent_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempt_count)


class RateLimitRecord(BaseModel):
    phone_number: str
    send_timestamps: List[datetime] = Field(default_factory=list)

    def prune(self, now: datetime, window_seconds: int) -> "RateLimitRecord":
        """Drops sends that have left the window."""
        window_start = now - timedelta(seconds=window_seconds)
        self.send_timestamps = sorted(ts for ts in self.send_timestamps if ts > window_start)
        return self

    @property
    def last_sent_at(self):
        return self.send_timestamps[-1] if self.send_timestamps else None
