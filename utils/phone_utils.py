"""
Phone number utilities for normalization and spoken-digit parsing.
"""

from __future__ import annotations

import re
from typing import Optional

import phonenumbers

from config import logger, DEFAULT_PHONE_REGION


_WORD_DIGITS = {
    "zero": "0", "oh": "0", "o": "0", "one": "1", "two": "2", "three": "3", "four": "4",
    "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9",
}


def parse_spoken_numerals(text: Optional[str]) -> str:
    """
    Parse spoken phone numbers, handling 'double', 'triple' and word-to-digit conversion.

    Examples:
        "double two" -> "22"
        "triple three" -> "333"
        "six one nine five five five" -> "619555"
        "619-555-1234" -> "6195551234"

    Words that are not digits are dropped, so this must only be applied to a
    value already known to be a phone number (never to a whole utterance).
    """
    if not text:
        return ""

    s = re.sub(r"[,.;:()\-]", " ", text.lower()).strip()
    s = s.replace("plus", "+")

    words = s.split()
    result = []
    i = 0
    while i < len(words):
        w = words[i]

        if w in ("double", "triple"):
            multiplier = 2 if w == "double" else 3
            if i + 1 < len(words):
                next_w = words[i + 1]
                if next_w in _WORD_DIGITS:
                    result.append(_WORD_DIGITS[next_w] * multiplier)
                    i += 2
                    continue
                elif next_w.isdigit() and len(next_w) == 1:
                    result.append(next_w * multiplier)
                    i += 2
                    continue
            i += 1
            continue

        if w in _WORD_DIGITS:
            result.append(_WORD_DIGITS[w])
        else:
            cleaned = "".join(c for c in w if c.isdigit() or c == "+")
            if cleaned:
                result.append(cleaned)
        i += 1

    return "".join(result)


def phone_digits(raw: Optional[object]) -> str:
    """Digits of a phone value, with formatting stripped."""
    if raw is None:
        return ""
    return re.sub(r"\D", "", str(raw))


def normalize_phone_digits(raw: Optional[object], region: str = DEFAULT_PHONE_REGION) -> Optional[str]:
    """
    Normalize a phone value (digits, formatted, or spoken) to a bare 10-digit string.

    Returns None when the value does not hold exactly one 10-digit national number
    (an 11-digit value with leading country code 1 is accepted and trimmed).
    """
    if raw is None:
        return None
    digits = phone_digits(parse_spoken_numerals(str(raw)))
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) != 10:
        return None

    try:
        parsed = phonenumbers.parse(digits, region)
    except phonenumbers.NumberParseException:
        logger.debug(f"[PHONE] Unparseable phone candidate: ***{digits[-4:]}")
        return None
    if not phonenumbers.is_possible_number(parsed):
        return None
    return digits


def is_ten_digit_phone(raw: Optional[object]) -> bool:
    """Domain check used by the validator: exactly 10 digits after stripping formatting."""
    digits = phone_digits(raw)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return len(digits) == 10
