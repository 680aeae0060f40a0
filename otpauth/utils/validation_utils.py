"""
otpauth/utils/validation_utils.py

Purpose: Input validation

- Phone number canonicalisation to E.164
- OTP format checks
- Display-name sanitization and search keywords
"""

import re
from typing import Optional, List


E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")


def normalize_phone_number(phone: str, default_country_code: str = "+91") -> Optional[str]:
    """
    Canonicalises a phone number to E.164.

    Accepted inputs:
    - "+15551234567", "+1 (555) 123-4567"   -> "+15551234567"
    - "00919876543210"                      -> "+919876543210"
    - "9876543210" (bare national number)   -> default_country_code + digits
    - "919876543210" when the default is +91 -> "+919876543210"

    Args:
        phone: Raw phone number as typed by the user
        default_country_code: Country prefix for 10-digit national numbers

    Returns:
        Canonical E.164 string, or None if the input cannot be a phone number
    """
    if not phone or not isinstance(phone, str):
        return None

    raw = phone.strip()
    has_plus = raw.startswith("+")

    # Reject anything beyond digits and the usual separators
    if re.search(r"[^\d\s\-\(\)\.\+]", raw) or raw.count("+") > (1 if has_plus else 0):
        return None

    digits = re.sub(r"\D", "", raw)
    if not digits:
        return None

    if has_plus:
        candidate = f"+{digits}"
    elif digits.startswith("00"):
        candidate = f"+{digits[2:]}"
    elif len(digits) == 10:
        candidate = f"{default_country_code}{digits}"
    elif digits.startswith(default_country_code[1:]) and len(digits) == len(default_country_code) - 1 + 10:
        candidate = f"+{digits}"
    else:
        return None

    if not E164_PATTERN.match(candidate):
        return None

    return candidate


def is_e164(phone: str) -> bool:
    """True when the value is already canonical E.164."""
    return bool(phone) and bool(E164_PATTERN.match(phone))


def validate_otp_format(otp: str, length: int = 6) -> bool:
    """
    Validates OTP format (exactly ``length`` digits).

    Args:
        otp: OTP string
        length: Expected number of digits

    Returns:
        True if valid
    """
    if not otp:
        return False

    return bool(re.fullmatch(rf"\d{{{length}}}", otp.strip()))


def sanitize_input(text: str, max_length: int = 1000) -> str:
    """
    Sanitizes user input to prevent injection attacks.

    Args:
        text: Input text
        max_length: Maximum allowed length

    Returns:
        Sanitized text
    """
    if not text:
        return ""

    text = text[:max_length]

    # Remove potentially dangerous characters
    text = re.sub(r"[<>{}\[\]]", "", text)

    # Normalize whitespace
    text = " ".join(text.split())

    return text.strip()


def generate_keywords(display_name: str) -> List[str]:
    """
    Builds lowercase search keywords for a display name: every prefix of the
    full name plus each individual word.

    "Asha Rao" -> ["a", "as", "ash", "asha", "asha r", "asha ra", "asha rao", "rao"]
    """
    name = sanitize_input(display_name).lower()
    if not name:
        return []

    keywords: List[str] = []
    for end in range(1, len(name) + 1):
        prefix = name[:end].strip()
        if prefix and prefix not in keywords:
            keywords.append(prefix)

    for part in name.split(" "):
        if part and part not in keywords:
            keywords.append(part)

    return keywords
