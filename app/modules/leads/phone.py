"""
Phone and email normalization helpers shared by the contact resolver and the delivery sinks.
Numbers are treated as US numbers: everything normalizes to +1 followed by the national digits.
"""

import hashlib
import re

_NON_DIGITS = re.compile(r"\D")


def normalize_email(email: str | None) -> str | None:
    if not email:
        return None
    email = email.strip().lower()
    return email or None


def normalize_phone(phone: str | None) -> str | None:
    """Format a raw phone number as E.164 (+1XXXXXXXXXX)."""
    if not phone:
        return None

    digits = _NON_DIGITS.sub("", phone)
    if not digits:
        return None

    if len(digits) == 11:
        # Eleven digits without a leading 1 are taken as missing the country code
        return f"+{digits}" if digits.startswith("1") else f"+1{digits}"
    if len(digits) >= 10:
        return f"+1{digits[-10:]}"
    # Too short to be a full number: keep what we have under the country code
    return f"+1{digits}"


def phone_hash(e164_phone: str | None) -> str | None:
    """One-way lookup key for a normalized phone number."""
    if not e164_phone:
        return None
    return hashlib.sha256(e164_phone.encode("utf-8")).hexdigest()


def phone_last4(phone: str | None) -> str:
    if not phone:
        return ""
    return _NON_DIGITS.sub("", phone)[-4:]


def phone_digits(phone: str | None) -> str | None:
    if not phone:
        return None
    return _NON_DIGITS.sub("", phone) or None
