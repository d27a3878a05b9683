"""
Utility modules for the receptionist core.
"""

from .phone_utils import (
    parse_spoken_numerals,
    normalize_phone_digits,
    is_ten_digit_phone,
)
from .contact_utils import (
    normalize_date_value,
    normalize_email,
    validate_email_address,
    today_in_clinic_tz,
)
from .call_logger import CallLogger, mask_phone, sanitize_payload

__all__ = [
    "parse_spoken_numerals",
    "normalize_phone_digits",
    "is_ten_digit_phone",
    "normalize_date_value",
    "normalize_email",
    "validate_email_address",
    "today_in_clinic_tz",
    "CallLogger",
    "mask_phone",
    "sanitize_payload",
]
