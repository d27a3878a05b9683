"""
Email and date/time normalization helpers shared by the extractors and the validator.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time
from typing import Optional
from zoneinfo import ZoneInfo

from dateutil import parser as dtparser
from email_validator import validate_email, EmailNotValidError

from config import DEFAULT_TZ

ISO_DATE_PAT = re.compile(r"^\d{4}-\d{2}-\d{2}$")
APT_DATETIME_PAT = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")
CLOCK_TIME_PAT = re.compile(r"^\d{2}:\d{2}(:\d{2})?$")

_MONTH_NAME_PAT = re.compile(
    r"\b(jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\b", re.IGNORECASE
)

# Spoken digit words to numeric digits (for email local parts with numbers)
_EMAIL_WORD_DIGITS = {
    "zero": "0", "oh": "0",
    "one": "1", "two": "2", "three": "3", "four": "4",
    "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9",
}

_EMAIL_INTRODUCER_PATTERNS = [
    r"\bmy\s+email\s+(?:address\s+)?is\b",
    r"\bemail\s+(?:address\s+)?is\b",
    r"\byou\s+can\s+(?:reach|email|contact)\s+me\s+at\b",
    r"\bcontact\s+me\s+at\b",
    r"\breach\s+me\s+at\b",
]


def today_in_clinic_tz() -> date:
    """The current calendar day in the clinic's timezone."""
    return datetime.now(ZoneInfo(DEFAULT_TZ)).date()


def parse_iso_date(value: object) -> Optional[date]:
    """Strict YYYY-MM-DD that must also be a real calendar date."""
    if not isinstance(value, str) or not ISO_DATE_PAT.match(value.strip()):
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def parse_apt_datetime(value: object) -> Optional[datetime]:
    """Strict YYYY-MM-DD HH:MM:SS."""
    if not isinstance(value, str) or not APT_DATETIME_PAT.match(value.strip()):
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None


def parse_clock_time(value: object) -> Optional[time]:
    """HH:MM or HH:MM:SS on a 24h clock."""
    if not isinstance(value, str) or not CLOCK_TIME_PAT.match(value.strip()):
        return None
    fmt = "%H:%M:%S" if value.count(":") == 2 else "%H:%M"
    try:
        return datetime.strptime(value.strip(), fmt).time()
    except ValueError:
        return None


def normalize_date_value(value: object) -> Optional[str]:
    """
    Normalize an extracted date to YYYY-MM-DD.

    ISO input is checked as-is. Free text is only parsed when it names the month
    ("August 12, 1988"); purely numeric forms like 8/12/88 are ambiguous and rejected.
    """
    if value is None:
        return None
    text = str(value).strip()
    iso = parse_iso_date(text)
    if iso:
        return iso.isoformat()
    if not _MONTH_NAME_PAT.search(text) or not re.search(r"\b\d{4}\b", text):
        return None
    try:
        return dtparser.parse(text, fuzzy=False).date().isoformat()
    except (ValueError, OverflowError):
        return None


def _strip_email_introducer(text: str) -> str:
    """Remove spoken introducer phrases so normalization applies only to the address."""
    if not text:
        return ""
    result = text.strip().lower()
    for pattern in _EMAIL_INTRODUCER_PATTERNS:
        result = re.sub(pattern, "", result, flags=re.IGNORECASE)
    return re.sub(r"\s+", " ", result).strip()


def normalize_email(spoken: str) -> str:
    """
    Normalize spoken email to standard email format.

    Processing order (do not reorder):
    1. Strip email introducer phrases ("my email is", etc.)
    2. Convert spoken digits to numbers ("six" -> "6")
    3. Replace spoken symbols ("at" -> "@", "dot" -> ".")
    4. Remove spaces
    """
    if not spoken:
        return ""

    s = _strip_email_introducer(spoken)
    s = " ".join(_EMAIL_WORD_DIGITS.get(tok, tok) for tok in s.split())

    s = f" {s} "
    s = s.replace(" at the rate ", " @ ")
    s = s.replace(" at ", " @ ")
    s = s.replace(" dot ", " . ")
    s = s.replace(" underscore ", " _ ")
    s = s.replace(" dash ", " - ")
    s = s.replace(" hyphen ", " - ")

    return re.sub(r"\s+", "", s)


def validate_email_address(addr: object) -> bool:
    if not isinstance(addr, str) or not addr.strip():
        return False
    try:
        validate_email(addr.strip(), check_deliverability=False)
        return True
    except EmailNotValidError:
        return False
