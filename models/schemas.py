"""
Function Schema Registry.

Static, declarative contract per booking function: required/optional fields,
defaults, alternative search shapes, per-field format rules, critical
identifier fields, which session slots can fill each field, and which result
values are promoted back into the session as authoritative identifiers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Type

from models.tool_args import FUNCTION_ARG_MODELS, FunctionArgs, _sanitize_tool_arg
from utils.contact_utils import (
    parse_apt_datetime,
    parse_clock_time,
    parse_iso_date,
    today_in_clinic_tz,
    validate_email_address,
)
from utils.phone_utils import is_ten_digit_phone

# A rule returns None when the value is acceptable, else the expected shape
DomainRule = Callable[[Any], Optional[str]]
ResultPromotion = Callable[[Any], Dict[str, Any]]

APT_STATUSES = ("Scheduled", "Complete", "UnschedList", "Broken", "Planned")

FIELD_LABELS: Dict[str, str] = {
    "FName": "first name",
    "LName": "last name",
    "Birthdate": "date of birth",
    "WirelessPhone": "phone number",
    "Phone": "phone number",
    "Email": "email address",
    "PatNum": "patient id",
    "AptNum": "appointment id",
    "AptDateTime": "appointment date and time",
    "ProvNum": "provider",
    "Op": "operatory",
    "OpNum": "operatory",
    "DateStart": "start date",
    "DateEnd": "end date",
    "dateStart": "start date",
    "dateEnd": "end date",
    "ScheduleNum": "schedule id",
    "ScheduleDate": "schedule date",
    "StartTime": "start time",
    "EndTime": "end time",
}


# =============================================================================
# DOMAIN RULES
# =============================================================================

def rule_iso_date(value: Any) -> Optional[str]:
    if parse_iso_date(value) is None:
        return "YYYY-MM-DD format with a real calendar date (e.g., 2025-12-05)"
    return None


def rule_birthdate(value: Any) -> Optional[str]:
    parsed = parse_iso_date(value)
    today = today_in_clinic_tz()
    if parsed is None:
        return "YYYY-MM-DD format (e.g., 1988-08-12); convert spoken dates like 'August 12, 1988' to 1988-08-12"
    if parsed.year < 1900 or parsed > today:
        return f"a past date with year 1900-{today.year}, month 01-12, day 01-31"
    return None


def rule_phone(value: Any) -> Optional[str]:
    if not is_ten_digit_phone(value):
        return "exactly 10 digits (e.g., 6195551234 or (619) 555-1234)"
    return None


def rule_email(value: Any) -> Optional[str]:
    if not validate_email_address(value):
        return "a valid email address (e.g., jane@example.com)"
    return None


def rule_apt_datetime(value: Any) -> Optional[str]:
    if parse_apt_datetime(value) is None:
        return "YYYY-MM-DD HH:MM:SS format (e.g., 2025-12-05 10:00:00)"
    return None


def rule_clock_time(value: Any) -> Optional[str]:
    if parse_clock_time(value) is None:
        return "HH:MM:SS on a 24h clock (e.g., 09:00:00)"
    return None


def rule_positive_int(value: Any) -> Optional[str]:
    if coerce_id(value) is None:
        return "a positive integer id (e.g., 1)"
    return None


def rule_length_minutes(value: Any) -> Optional[str]:
    minutes = coerce_id(value)
    if minutes is None or not 5 <= minutes <= 480:
        return "a number of minutes between 5 and 480"
    return None


def rule_apt_status(value: Any) -> Optional[str]:
    if value not in APT_STATUSES:
        return f"one of {', '.join(APT_STATUSES)}"
    return None


def coerce_id(value: Any) -> Optional[int]:
    """Positive integer from an int or a digit string; anything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
        return number if number > 0 else None
    return None


# =============================================================================
# SLOT BINDINGS
# =============================================================================

@dataclass(frozen=True)
class SlotBinding:
    """
    Which session slot(s) back a function field.

    autofill=False bindings are only consulted by the critical-identifier guard,
    never to fill a field the caller left out.
    """
    paths: Tuple[str, ...]
    compose: Optional[Callable[..., Any]] = None
    autofill: bool = True

    def read(self, state) -> Any:
        values = [state.get_slot(p) for p in self.paths]
        if self.compose is not None:
            return self.compose(*values)
        return values[0]

    @property
    def writable_path(self) -> Optional[str]:
        """The single slot an extracted value for this field can be stored in."""
        if self.compose is None and len(self.paths) == 1:
            return self.paths[0]
        return None


def slot(path: str, autofill: bool = True) -> SlotBinding:
    return SlotBinding(paths=(path,), autofill=autofill)


def _compose_apt_datetime(day: Optional[str], clock: Optional[str]) -> Optional[str]:
    if parse_iso_date(day) is None or parse_clock_time(clock) is None:
        return None
    hh_mm = clock[:5]
    return f"{day} {hh_mm}:00"


def _first_present(*values: Any) -> Any:
    for value in values:
        if _sanitize_tool_arg(value) is not None:
            return value
    return None


# =============================================================================
# RESULT PROMOTIONS (handler result -> authoritative session values)
# =============================================================================

def _promote_created_patient(result: Any) -> Dict[str, Any]:
    if isinstance(result, dict) and coerce_id(result.get("PatNum")):
        return {"identifiers.patient_id": coerce_id(result["PatNum"])}
    return {}


def _promote_single_patient_match(result: Any) -> Dict[str, Any]:
    # More than one match is not an identification
    if not isinstance(result, list) or len(result) != 1 or not isinstance(result[0], dict):
        return {}
    match = result[0]
    if not coerce_id(match.get("PatNum")):
        return {}
    return {
        "identifiers.patient_id": coerce_id(match["PatNum"]),
        "patient.first_name": match.get("FName"),
        "patient.last_name": match.get("LName"),
    }


def _promote_scheduled_appointment(result: Any) -> Dict[str, Any]:
    if not isinstance(result, list) or not result:
        return {}
    appointments = [apt for apt in result if isinstance(apt, dict)]
    scheduled = [apt for apt in appointments if str(apt.get("AptStatus", "")).lower() == "scheduled"]
    chosen = (scheduled or appointments or [None])[0]
    if chosen and coerce_id(chosen.get("AptNum")):
        return {"identifiers.appointment_id": coerce_id(chosen["AptNum"])}
    return {}


def _promote_created_appointment(result: Any) -> Dict[str, Any]:
    if isinstance(result, dict) and coerce_id(result.get("AptNum")):
        return {"identifiers.appointment_id": coerce_id(result["AptNum"])}
    return {}


# =============================================================================
# FUNCTION SCHEMA
# =============================================================================

@dataclass(frozen=True)
class FunctionSchema:
    name: str
    args_model: Type[FunctionArgs]
    required: Tuple[str, ...]
    description: str
    example: Mapping[str, Any]
    defaults: Mapping[str, Any] = field(default_factory=dict)
    # each entry: (label, fields that must all be present, example call)
    disjunctive_groups: Tuple[Tuple[str, Tuple[str, ...], Mapping[str, Any]], ...] = ()
    domain_rules: Mapping[str, DomainRule] = field(default_factory=dict)
    critical_fields: Tuple[str, ...] = ()
    slot_bindings: Mapping[str, SlotBinding] = field(default_factory=dict)
    promotions: Tuple[ResultPromotion, ...] = ()
    completes_booking: bool = False

    def __post_init__(self):
        declared = set(self.args_model.field_names())
        referenced = (
            set(self.required)
            | set(self.defaults)
            | set(self.domain_rules)
            | set(self.critical_fields)
            | set(self.slot_bindings)
            | {f for _, group, _ in self.disjunctive_groups for f in group}
        )
        unknown = referenced - declared
        if unknown:
            raise ValueError(f"Schema {self.name} references undeclared fields: {sorted(unknown)}")

    @property
    def fields(self) -> Tuple[str, ...]:
        return self.args_model.field_names()

    @property
    def optional(self) -> Tuple[str, ...]:
        return tuple(f for f in self.fields if f not in self.required)

    def is_critical(self, field_name: str) -> bool:
        return field_name in self.critical_fields

    def label(self, field_name: str) -> str:
        return FIELD_LABELS.get(field_name, field_name)

    def describe_field(self, field_name: str) -> str:
        return self.args_model.describe(field_name)


_PATIENT_ID = slot("identifiers.patient_id")
_APPOINTMENT_ID = slot("identifiers.appointment_id")


def _build_schemas() -> List[FunctionSchema]:
    m = FUNCTION_ARG_MODELS
    return [
        FunctionSchema(
            name="GetMultiplePatients",
            args_model=m["GetMultiplePatients"],
            required=(),
            description="Search by name (LName+FName) OR phone (10 digits) OR PatNum",
            example={"LName": "Smith", "FName": "John"},
            disjunctive_groups=(
                ("Search by name", ("LName", "FName"), {"LName": "Smith", "FName": "John"}),
                ("Search by phone", ("Phone",), {"Phone": "6195551234"}),
                ("Search by ID", ("PatNum",), {"PatNum": 1}),
            ),
            domain_rules={"Phone": rule_phone, "PatNum": rule_positive_int},
            critical_fields=("PatNum",),
            slot_bindings={
                "LName": slot("patient.last_name"),
                "FName": slot("patient.first_name"),
                "Phone": slot("patient.phone"),
                "PatNum": slot("identifiers.patient_id", autofill=False),
            },
            promotions=(_promote_single_patient_match,),
        ),
        FunctionSchema(
            name="GetPatient",
            args_model=m["GetPatient"],
            required=("PatNum",),
            description="Get single patient by PatNum",
            example={"PatNum": 1},
            domain_rules={"PatNum": rule_positive_int},
            critical_fields=("PatNum",),
            slot_bindings={"PatNum": _PATIENT_ID},
            promotions=(_promote_created_patient,),
        ),
        FunctionSchema(
            name="CreatePatient",
            args_model=m["CreatePatient"],
            required=("FName", "LName", "Birthdate", "WirelessPhone"),
            description="Create new patient. Birthdate must be YYYY-MM-DD, phone must be 10 digits",
            example={"FName": "John", "LName": "Smith", "Birthdate": "1990-01-15", "WirelessPhone": "6195551234"},
            domain_rules={"Birthdate": rule_birthdate, "WirelessPhone": rule_phone, "Email": rule_email},
            slot_bindings={
                "FName": slot("patient.first_name"),
                "LName": slot("patient.last_name"),
                "Birthdate": slot("patient.birthdate"),
                "WirelessPhone": slot("patient.phone"),
                "Email": slot("patient.email"),
            },
            promotions=(_promote_created_patient,),
        ),
        FunctionSchema(
            name="UpdatePatient",
            args_model=m["UpdatePatient"],
            required=("PatNum",),
            description="Update an existing patient by PatNum",
            example={"PatNum": 1, "WirelessPhone": "6195551234"},
            domain_rules={
                "PatNum": rule_positive_int,
                "Birthdate": rule_birthdate,
                "WirelessPhone": rule_phone,
                "Email": rule_email,
            },
            critical_fields=("PatNum",),
            slot_bindings={"PatNum": _PATIENT_ID},
        ),
        FunctionSchema(
            name="GetAppointments",
            args_model=m["GetAppointments"],
            required=("DateStart", "DateEnd"),
            description="Get appointments in date range. Optionally filter by PatNum",
            example={"DateStart": "2025-12-01", "DateEnd": "2025-12-31", "PatNum": 1},
            domain_rules={"DateStart": rule_iso_date, "DateEnd": rule_iso_date, "PatNum": rule_positive_int},
            critical_fields=("PatNum",),
            slot_bindings={"PatNum": _PATIENT_ID},
            promotions=(_promote_scheduled_appointment,),
        ),
        FunctionSchema(
            name="GetAvailableSlots",
            args_model=m["GetAvailableSlots"],
            required=("dateStart", "dateEnd"),
            description="Get available time slots. Without ProvNum/OpNum every provider and room is searched",
            example={"dateStart": "2025-12-05", "dateEnd": "2025-12-05"},
            domain_rules={
                "dateStart": rule_iso_date,
                "dateEnd": rule_iso_date,
                "ProvNum": rule_positive_int,
                "OpNum": rule_positive_int,
                "lengthMinutes": rule_length_minutes,
            },
            slot_bindings={
                "dateStart": slot("appointment.date"),
                "dateEnd": slot("appointment.date"),
            },
        ),
        FunctionSchema(
            name="CreateAppointment",
            args_model=m["CreateAppointment"],
            required=("PatNum", "AptDateTime", "ProvNum", "Op"),
            description="Book appointment. AptDateTime must be YYYY-MM-DD HH:MM:SS format",
            example={"PatNum": 1, "AptDateTime": "2025-12-05 10:00:00", "ProvNum": 1, "Op": 1, "Note": "Cleaning"},
            defaults={"AptStatus": "Scheduled"},
            domain_rules={
                "PatNum": rule_positive_int,
                "AptDateTime": rule_apt_datetime,
                "ProvNum": rule_positive_int,
                "Op": rule_positive_int,
                "AptStatus": rule_apt_status,
            },
            critical_fields=("PatNum",),
            slot_bindings={
                "PatNum": _PATIENT_ID,
                "AptDateTime": SlotBinding(
                    paths=("appointment.date", "appointment.time"), compose=_compose_apt_datetime
                ),
                "ProvNum": slot("appointment.provider_id"),
                "Op": slot("appointment.operatory_id"),
                "Note": SlotBinding(paths=("appointment.note", "appointment.type"), compose=_first_present),
            },
            promotions=(_promote_created_appointment,),
            completes_booking=True,
        ),
        FunctionSchema(
            name="UpdateAppointment",
            args_model=m["UpdateAppointment"],
            required=("AptNum",),
            description="Update existing appointment by AptNum",
            example={"AptNum": 1, "AptDateTime": "2025-12-06 14:00:00"},
            domain_rules={
                "AptNum": rule_positive_int,
                "AptDateTime": rule_apt_datetime,
                "AptStatus": rule_apt_status,
                "ProvNum": rule_positive_int,
                "Op": rule_positive_int,
                "PatNum": rule_positive_int,
            },
            critical_fields=("AptNum", "PatNum"),
            slot_bindings={"AptNum": _APPOINTMENT_ID, "PatNum": _PATIENT_ID},
            completes_booking=True,
        ),
        FunctionSchema(
            name="BreakAppointment",
            args_model=m["BreakAppointment"],
            required=("AptNum",),
            description="Cancel (break) a scheduled appointment by AptNum",
            example={"AptNum": 1},
            domain_rules={"AptNum": rule_positive_int},
            critical_fields=("AptNum",),
            slot_bindings={"AptNum": _APPOINTMENT_ID},
        ),
        FunctionSchema(
            name="DeleteAppointment",
            args_model=m["DeleteAppointment"],
            required=("AptNum",),
            description="Delete an appointment by AptNum",
            example={"AptNum": 1},
            domain_rules={"AptNum": rule_positive_int},
            critical_fields=("AptNum",),
            slot_bindings={"AptNum": _APPOINTMENT_ID},
        ),
        FunctionSchema(
            name="GetSchedule",
            args_model=m["GetSchedule"],
            required=("ScheduleNum",),
            description="Get single schedule by ID",
            example={"ScheduleNum": 1},
            domain_rules={"ScheduleNum": rule_positive_int},
        ),
        FunctionSchema(
            name="GetProviderSchedules",
            args_model=m["GetProviderSchedules"],
            required=("ProvNum",),
            description="Get schedules for a specific provider",
            example={"ProvNum": 1, "DateStart": "2025-12-01", "DateEnd": "2025-12-31"},
            domain_rules={"ProvNum": rule_positive_int, "DateStart": rule_iso_date, "DateEnd": rule_iso_date},
        ),
        FunctionSchema(
            name="CreateSchedule",
            args_model=m["CreateSchedule"],
            required=("ProvNum", "OpNum", "ScheduleDate", "StartTime", "EndTime"),
            description="Create provider schedule for a specific date",
            example={"ProvNum": 1, "OpNum": 1, "ScheduleDate": "2025-12-02", "StartTime": "09:00:00", "EndTime": "17:00:00"},
            domain_rules={
                "ProvNum": rule_positive_int,
                "OpNum": rule_positive_int,
                "ScheduleDate": rule_iso_date,
                "StartTime": rule_clock_time,
                "EndTime": rule_clock_time,
            },
        ),
        FunctionSchema(
            name="UpdateSchedule",
            args_model=m["UpdateSchedule"],
            required=("ScheduleNum",),
            description="Update existing schedule",
            example={"ScheduleNum": 1, "StartTime": "08:00:00"},
            domain_rules={
                "ScheduleNum": rule_positive_int,
                "ProvNum": rule_positive_int,
                "OpNum": rule_positive_int,
                "ScheduleDate": rule_iso_date,
                "StartTime": rule_clock_time,
                "EndTime": rule_clock_time,
            },
        ),
        FunctionSchema(
            name="DeleteSchedule",
            args_model=m["DeleteSchedule"],
            required=("ScheduleNum",),
            description="Delete a schedule",
            example={"ScheduleNum": 1},
            domain_rules={"ScheduleNum": rule_positive_int},
        ),
        FunctionSchema(
            name="CreateDefaultSchedules",
            args_model=m["CreateDefaultSchedules"],
            required=("ProvNum", "OpNum", "DateStart", "DateEnd"),
            description="Create schedules for a date range (Mon-Fri by default)",
            example={"ProvNum": 1, "OpNum": 1, "DateStart": "2025-12-02", "DateEnd": "2025-12-06"},
            domain_rules={
                "ProvNum": rule_positive_int,
                "OpNum": rule_positive_int,
                "DateStart": rule_iso_date,
                "DateEnd": rule_iso_date,
                "StartTime": rule_clock_time,
                "EndTime": rule_clock_time,
            },
        ),
        FunctionSchema(
            name="CheckScheduleConflicts",
            args_model=m["CheckScheduleConflicts"],
            required=("ProvNum", "OpNum", "ScheduleDate", "StartTime", "EndTime"),
            description="Check if a schedule would conflict with existing ones",
            example={"ProvNum": 1, "OpNum": 1, "ScheduleDate": "2025-12-02", "StartTime": "09:00:00", "EndTime": "17:00:00"},
            domain_rules={
                "ProvNum": rule_positive_int,
                "OpNum": rule_positive_int,
                "ScheduleDate": rule_iso_date,
                "StartTime": rule_clock_time,
                "EndTime": rule_clock_time,
                "ExcludeScheduleNum": rule_positive_int,
            },
        ),
    ]


class FunctionSchemaRegistry:
    """Pure lookup. An absent entry means the function passes through unvalidated."""

    def __init__(self, schemas: Iterable[FunctionSchema]):
        self._schemas: Dict[str, FunctionSchema] = {s.name: s for s in schemas}

    def get(self, function_name: Optional[str]) -> Optional[FunctionSchema]:
        if not function_name:
            return None
        return self._schemas.get(function_name)

    def names(self) -> List[str]:
        return sorted(self._schemas)

    def __contains__(self, function_name: str) -> bool:
        return function_name in self._schemas

    def __iter__(self):
        return iter(self._schemas.values())


default_registry = FunctionSchemaRegistry(_build_schemas())


def get_schema(function_name: Optional[str]) -> Optional[FunctionSchema]:
    return default_registry.get(function_name)
