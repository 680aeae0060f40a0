"""
otpauth/utils/time_utils.py

Purpose: Time and expiry helpers

- Timezone-aware "now" used as the default clock
- Countdown calculations for expiry, cooldowns and rate limits
"""

import math
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """
    Returns the current UTC time (timezone-aware).
    """
    return datetime.now(timezone.utc)


def seconds_until(moment: datetime, now: datetime) -> int:
    """
    Whole seconds from ``now`` until ``moment``, rounded up, never negative.
    """
    remaining = (moment - now).total_seconds()
    if remaining <= 0:
        return 0
    return math.ceil(remaining)

