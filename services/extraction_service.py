"""
Deterministic data extraction from a single conversation turn.

Pattern-based, side-effect free, no network. Every extractor returns None
when a match is ambiguous: a wrong value here silently becomes session
state that later autofills booking calls, so recall is traded for precision.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Any, Dict, List, Optional, Tuple
from dateutil.relativedelta import relativedelta, MO, TU, WE, TH, FR, SA, SU

from models.state import Intent
from utils.contact_utils import (
    normalize_date_value,
    normalize_email,
    parse_iso_date,
    today_in_clinic_tz,
    validate_email_address,
)
from utils.phone_utils import normalize_phone_digits


_MONTHS = {
    "jan": 1, "january": 1, "feb": 2, "february": 2, "mar": 3, "march": 3,
    "apr": 4, "april": 4, "may": 5, "jun": 6, "june": 6, "jul": 7, "july": 7,
    "aug": 8, "august": 8, "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10, "nov": 11, "november": 11, "dec": 12, "december": 12,
}
_MONTH_ALT = "|".join(sorted(_MONTHS, key=len, reverse=True))

_WEEKDAYS = {
    "monday": MO, "tuesday": TU, "wednesday": WE, "thursday": TH,
    "friday": FR, "saturday": SA, "sunday": SU,
}

_BIRTH_CONTEXT = re.compile(r"\b(born|birth|birthday|birthdate|dob|d\.o\.b)\b", re.IGNORECASE)

_PHONE_PAT = re.compile(r"(?<![\d-])(?:\+?1[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}(?![\d-])")
_EMAIL_PAT = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_SPOKEN_EMAIL_PAT = re.compile(r"\bemail\s+(?:address\s+)?is\s+(.+?)(?:[?!]|\.\s|$)", re.IGNORECASE)

_ISO_IN_TEXT = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
_SLASH_DATE = re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{4}|\d{2}))?\b")
_MONTH_DAY_YEAR = re.compile(
    rf"\b(?:{_MONTH_ALT})\.?\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}\b", re.IGNORECASE
)
_DAY_MONTH_YEAR = re.compile(
    rf"\b\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?(?:{_MONTH_ALT})\.?,?\s+\d{{4}}\b", re.IGNORECASE
)
_MONTH_DAY = re.compile(rf"\b({_MONTH_ALT})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?\b(?!\s*,?\s*\d{{4}})", re.IGNORECASE)

_CLOCK_TIME = re.compile(r"\b(\d{1,2}):(\d{2})\s*([ap])?\.?\s*m?\b\.?", re.IGNORECASE)
_HOUR_AMPM = re.compile(r"\b(\d{1,2})\s*([ap])\.?\s*m\b\.?", re.IGNORECASE)

_NAME_WORD = r"([A-Za-z][A-Za-z'-]+)"
# Introductions that name the speaker regardless of casing
_EXPLICIT_NAME_PATTERNS = [
    re.compile(rf"\bmy\s+name\s+is\s+{_NAME_WORD}(?:\s+{_NAME_WORD})?", re.IGNORECASE),
    re.compile(rf"\bname['’]s\s+{_NAME_WORD}(?:\s+{_NAME_WORD})?", re.IGNORECASE),
]
# Looser introductions: only accepted when the transcript capitalised the name
_LOOSE_NAME_PATTERNS = [
    re.compile(rf"\b(?:[Ii]'m|[Ii]\s+am|[Tt]his\s+is|[Ii]t'?s)\s+{_NAME_WORD}(?:\s+{_NAME_WORD})?"),
    re.compile(rf"\b[Cc]all\s+me\s+{_NAME_WORD}"),
]
_NOT_A_NAME = frozenset({
    "a", "an", "the", "and", "or", "but", "so", "just", "not", "also", "still", "really", "very",
    "calling", "looking", "trying", "wondering", "hoping", "going", "having", "checking", "booking",
    "interested", "new", "here", "sorry", "actually", "fine", "good", "okay", "ok", "ready", "done",
    "available", "free", "busy", "sick", "in", "on", "at", "to", "for", "from", "with", "about",
    "patient", "hi", "hello", "hey", "yes", "no", "yeah", "urgent", "me", "my", "is", "was",
    "today", "tomorrow", "morning", "afternoon", "evening",
    "back", "later", "again", "anytime", "whenever", "sometime", "soon", "now", "asap", "please",
    "of", "your",
}) | frozenset(_WEEKDAYS) | frozenset(_MONTHS)

_APPOINTMENT_TYPES: List[Tuple[Tuple[str, ...], str]] = [
    (("root canal",), "root canal"),
    (("cleaning",), "cleaning"),
    (("checkup", "check-up", "check up", "exam"), "checkup"),
    (("filling",), "filling"),
    (("crown",), "crown"),
    (("extraction", "pull a tooth", "tooth pulled", "pulled"), "extraction"),
    (("whitening", "whiten"), "whitening"),
    (("emergency",), "emergency"),
]

_INTENT_PATTERNS: List[Tuple[Intent, re.Pattern]] = [
    (Intent.RESCHEDULE, re.compile(r"\breschedul|\b(?:move|change)\s+my\s+appointment\b", re.IGNORECASE)),
    (Intent.CANCEL, re.compile(r"\bcancel", re.IGNORECASE)),
    (Intent.CHECK, re.compile(
        r"\bcheck\s+(?:on\s+)?my\s+appointment\b|\b(?:when|what\s+time)\s+is\s+my\s+appointment\b",
        re.IGNORECASE,
    )),
    (Intent.BOOK, re.compile(r"\bbook\b|\bschedule\b|\bmake\s+an\s+appointment\b|\bappointment\b", re.IGNORECASE)),
]

_NEW_PATIENT_PAT = re.compile(
    r"\bnew\s+patient\b|\bi'?m\s+new\b|\bi\s+am\s+new\b|\bfirst\s+time\b|\bnever\s+been\b", re.IGNORECASE
)


def has_birth_context(text: str) -> bool:
    return bool(_BIRTH_CONTEXT.search(text or ""))


# =============================================================================
# INDIVIDUAL EXTRACTORS
# =============================================================================

def extract_name(text: str) -> Dict[str, str]:
    """First/last name from an introduction; {} when nothing trustworthy is found."""
    if not text:
        return {}

    def _accept(first: Optional[str], last: Optional[str]) -> Dict[str, str]:
        if not first or first.lower() in _NOT_A_NAME:
            return {}
        found = {"patient.first_name": first.title()}
        if last and last.lower() not in _NOT_A_NAME:
            found["patient.last_name"] = last.title()
        return found

    for pat in _EXPLICIT_NAME_PATTERNS:
        m = pat.search(text)
        if m:
            last = m.group(2) if m.lastindex and m.lastindex >= 2 else None
            return _accept(m.group(1), last)

    for pat in _LOOSE_NAME_PATTERNS:
        for m in pat.finditer(text):
            first = m.group(1)
            last = m.group(2) if pat.groups >= 2 else None
            if not first[0].isupper():
                continue
            if last and not last[0].isupper():
                last = None
            found = _accept(first, last)
            if found:
                return found
    return {}


def extract_phone(text: str) -> Optional[str]:
    """A single numeric phone number; two different numbers in one turn is ambiguous."""
    if not text:
        return None
    candidates = {normalize_phone_digits(m.group(0)) for m in _PHONE_PAT.finditer(text)}
    candidates.discard(None)
    if len(candidates) != 1:
        return None
    return candidates.pop()


def extract_email(text: str) -> Optional[str]:
    if not text:
        return None
    written = {m.group(0).rstrip(".").lower() for m in _EMAIL_PAT.finditer(text)}
    if len(written) == 1:
        addr = written.pop()
        return addr if validate_email_address(addr) else None
    if written:
        return None

    m = _SPOKEN_EMAIL_PAT.search(text)
    if m:
        addr = normalize_email(m.group(1))
        if validate_email_address(addr):
            return addr
    return None


def _full_dates_in(text: str) -> List[str]:
    """Every full (year-bearing) date in the text, normalized to YYYY-MM-DD."""
    found: List[str] = []
    for m in _ISO_IN_TEXT.finditer(text):
        if parse_iso_date(m.group(1)):
            found.append(m.group(1))
    for m in _SLASH_DATE.finditer(text):
        month, day, year = m.group(1), m.group(2), m.group(3)
        if year and len(year) == 4:
            iso = f"{year}-{int(month):02d}-{int(day):02d}"
            if parse_iso_date(iso):
                found.append(iso)
    for pat in (_MONTH_DAY_YEAR, _DAY_MONTH_YEAR):
        for m in pat.finditer(text):
            iso = normalize_date_value(re.sub(r"(?<=\d)(st|nd|rd|th)|\bof\b", "", m.group(0)))
            if iso:
                found.append(iso)
    return found


def extract_birthdate(text: str, reference_date: Optional[date] = None) -> Optional[str]:
    """
    Date of birth as YYYY-MM-DD.

    Accepted only with birth wording ("born", "DOB", "date of birth") or when
    the year is at least two years in the past; two-digit years only with
    birth wording.
    """
    if not text:
        return None
    today = reference_date or today_in_clinic_tz()
    birth_context = has_birth_context(text)

    candidates = set(_full_dates_in(text))
    if birth_context:
        for m in _SLASH_DATE.finditer(text):
            month, day, year = m.group(1), m.group(2), m.group(3)
            if year and len(year) == 2:
                yy = int(year)
                century = 2000 if yy <= today.year % 100 else 1900
                iso = f"{century + yy}-{int(month):02d}-{int(day):02d}"
                if parse_iso_date(iso):
                    candidates.add(iso)

    plausible = set()
    for iso in candidates:
        born = parse_iso_date(iso)
        if born is None or born.year < 1900 or born >= today:
            continue
        if birth_context or born.year <= today.year - 2:
            plausible.add(iso)
    if len(plausible) != 1:
        return None
    return plausible.pop()


def extract_date_preference(text: str, reference_date: Optional[date] = None) -> Optional[str]:
    """
    Requested appointment day as YYYY-MM-DD.

    Weekday names resolve to the next occurrence strictly after today
    ("next Friday" is the same day as "Friday"). A month/day without a year
    that has already passed this year rolls into next year.
    """
    if not text or has_birth_context(text):
        return None
    today = reference_date or today_in_clinic_tz()
    lower = text.lower()

    for iso in _full_dates_in(text):
        parsed = parse_iso_date(iso)
        if parsed and parsed >= today:
            return iso

    m = _SLASH_DATE.search(text)
    if m and not m.group(3):
        candidate = _roll_forward(today, int(m.group(1)), int(m.group(2)))
        if candidate:
            return candidate

    m = _MONTH_DAY.search(text)
    if m:
        candidate = _roll_forward(today, _MONTHS[m.group(1).lower()], int(m.group(2)))
        if candidate:
            return candidate

    if re.search(r"\btoday\b", lower):
        return today.isoformat()
    if re.search(r"\btomorrow\b", lower):
        return (today + relativedelta(days=1)).isoformat()

    named = [day for day in _WEEKDAYS if re.search(rf"\b{day}\b", lower)]
    if len(named) == 1:
        return (today + relativedelta(days=1, weekday=_WEEKDAYS[named[0]])).isoformat()
    return None


def _roll_forward(today: date, month: int, day: int) -> Optional[str]:
    for year in (today.year, today.year + 1):
        try:
            candidate = date(year, month, day)
        except ValueError:
            return None
        if candidate >= today:
            return candidate.isoformat()
    return None


def extract_time_preference(text: str) -> Optional[str]:
    """'morning' / 'afternoon' / 'evening', or HH:MM when written with a colon or am/pm."""
    if not text:
        return None
    lower = text.lower()
    for period in ("morning", "afternoon", "evening"):
        if re.search(rf"\b{period}\b", lower):
            return period

    m = _CLOCK_TIME.search(text)
    if m:
        return _to_clock(int(m.group(1)), int(m.group(2)), m.group(3))
    m = _HOUR_AMPM.search(text)
    if m:
        return _to_clock(int(m.group(1)), 0, m.group(2))
    return None


def _to_clock(hour: int, minute: int, meridiem: Optional[str]) -> Optional[str]:
    if minute > 59:
        return None
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        if meridiem.lower() == "p" and hour < 12:
            hour += 12
        elif meridiem.lower() == "a" and hour == 12:
            hour = 0
    elif hour > 23:
        return None
    return f"{hour:02d}:{minute:02d}"


def extract_appointment_type(text: str) -> Optional[str]:
    if not text:
        return None
    lower = text.lower()
    for keywords, apt_type in _APPOINTMENT_TYPES:
        if any(k in lower for k in keywords):
            return apt_type
    return None


def extract_intent(text: str) -> Intent:
    if not text:
        return Intent.UNKNOWN
    for intent, pat in _INTENT_PATTERNS:
        if pat.search(text):
            return intent
    return Intent.UNKNOWN


def is_new_patient_statement(text: str) -> bool:
    return bool(_NEW_PATIENT_PAT.search(text or ""))


# =============================================================================
# ENTRY POINT
# =============================================================================

def extract(turn_content: str, reference_date: Optional[date] = None) -> Dict[str, Any]:
    """
    Scan one user turn and return the facts found, keyed by slot path
    (plus "intent" when one is recognised). Facts not found are omitted.
    """
    if not turn_content or not turn_content.strip():
        return {}
    text = turn_content.strip()
    found: Dict[str, Any] = {}

    found.update(extract_name(text))

    phone = extract_phone(text)
    if phone:
        found["patient.phone"] = phone

    email = extract_email(text)
    if email:
        found["patient.email"] = email

    birthdate = extract_birthdate(text, reference_date)
    if birthdate:
        found["patient.birthdate"] = birthdate

    if is_new_patient_statement(text):
        found["patient.is_new_patient"] = True

    apt_type = extract_appointment_type(text)
    if apt_type:
        found["appointment.type"] = apt_type

    day = extract_date_preference(text, reference_date)
    if day and day != birthdate:
        found["appointment.date"] = day

    # A phone number or a date can look like a clock time; only read times from what is left
    time_text = _PHONE_PAT.sub(" ", text)
    when = extract_time_preference(time_text)
    if when:
        found["appointment.time"] = when

    intent = extract_intent(text)
    if intent is not Intent.UNKNOWN:
        found["intent"] = intent.value

    return found
