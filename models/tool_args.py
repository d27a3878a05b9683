"""
Pydantic models for booking function arguments.

One model per function name: the model's fields are the function's full field
set, and the field descriptions feed the extraction prompt.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Type, Union
from pydantic import BaseModel, ConfigDict, Field

IdValue = Optional[Union[int, str]]


class FunctionArgs(BaseModel):
    # Unknown keys are kept so unregistered extras pass through untouched
    model_config = ConfigDict(extra="allow")

    @classmethod
    def field_names(cls) -> tuple:
        return tuple(cls.model_fields.keys())

    @classmethod
    def describe(cls, name: str) -> str:
        info = cls.model_fields.get(name)
        return (info.description if info and info.description else name)


# -----------------------------------------------------------------------------
# Patients
# -----------------------------------------------------------------------------

class GetMultiplePatientsArgs(FunctionArgs):
    LName: Optional[str] = Field(None, description="patient last name")
    FName: Optional[str] = Field(None, description="patient first name")
    Phone: Optional[str] = Field(None, description="patient phone number, 10 digits only")
    PatNum: IdValue = Field(None, description="patient id")


class GetPatientArgs(FunctionArgs):
    PatNum: IdValue = Field(None, description="patient id")


class CreatePatientArgs(FunctionArgs):
    FName: Optional[str] = Field(None, description="patient first name")
    LName: Optional[str] = Field(None, description="patient last name")
    Birthdate: Optional[str] = Field(None, description="date of birth as YYYY-MM-DD")
    WirelessPhone: Optional[str] = Field(None, description="mobile phone number, 10 digits only")
    Email: Optional[str] = Field(None, description="email address")


class UpdatePatientArgs(FunctionArgs):
    PatNum: IdValue = Field(None, description="patient id")
    FName: Optional[str] = Field(None, description="patient first name")
    LName: Optional[str] = Field(None, description="patient last name")
    Birthdate: Optional[str] = Field(None, description="date of birth as YYYY-MM-DD")
    WirelessPhone: Optional[str] = Field(None, description="mobile phone number, 10 digits only")
    Email: Optional[str] = Field(None, description="email address")


# -----------------------------------------------------------------------------
# Appointments
# -----------------------------------------------------------------------------

class GetAppointmentsArgs(FunctionArgs):
    DateStart: Optional[str] = Field(None, description="first day of the range as YYYY-MM-DD")
    DateEnd: Optional[str] = Field(None, description="last day of the range as YYYY-MM-DD")
    PatNum: IdValue = Field(None, description="patient id")


class GetAvailableSlotsArgs(FunctionArgs):
    dateStart: Optional[str] = Field(None, description="first day to search as YYYY-MM-DD")
    dateEnd: Optional[str] = Field(None, description="last day to search as YYYY-MM-DD")
    ProvNum: IdValue = Field(None, description="provider id")
    OpNum: IdValue = Field(None, description="operatory (room) id")
    lengthMinutes: IdValue = Field(None, description="appointment length in minutes")
    searchAll: Optional[bool] = Field(None, description="search every provider and room")


class CreateAppointmentArgs(FunctionArgs):
    PatNum: IdValue = Field(None, description="patient id")
    AptDateTime: Optional[str] = Field(None, description="appointment start as YYYY-MM-DD HH:MM:SS")
    ProvNum: IdValue = Field(None, description="provider id")
    Op: IdValue = Field(None, description="operatory (room) id")
    Note: Optional[str] = Field(None, description="short note, usually the appointment type")
    AptStatus: Optional[str] = Field(None, description="appointment status")


class UpdateAppointmentArgs(FunctionArgs):
    AptNum: IdValue = Field(None, description="appointment id")
    AptDateTime: Optional[str] = Field(None, description="new appointment start as YYYY-MM-DD HH:MM:SS")
    AptStatus: Optional[str] = Field(None, description="appointment status")
    ProvNum: IdValue = Field(None, description="provider id")
    Op: IdValue = Field(None, description="operatory (room) id")
    Note: Optional[str] = Field(None, description="short note")
    PatNum: IdValue = Field(None, description="patient id")


class BreakAppointmentArgs(FunctionArgs):
    AptNum: IdValue = Field(None, description="appointment id")


class DeleteAppointmentArgs(FunctionArgs):
    AptNum: IdValue = Field(None, description="appointment id")


# -----------------------------------------------------------------------------
# Schedules
# -----------------------------------------------------------------------------

class GetScheduleArgs(FunctionArgs):
    ScheduleNum: IdValue = Field(None, description="schedule id")


class GetProviderSchedulesArgs(FunctionArgs):
    ProvNum: IdValue = Field(None, description="provider id")
    DateStart: Optional[str] = Field(None, description="first day as YYYY-MM-DD")
    DateEnd: Optional[str] = Field(None, description="last day as YYYY-MM-DD")


class CreateScheduleArgs(FunctionArgs):
    ProvNum: IdValue = Field(None, description="provider id")
    OpNum: IdValue = Field(None, description="operatory (room) id")
    ScheduleDate: Optional[str] = Field(None, description="schedule day as YYYY-MM-DD")
    StartTime: Optional[str] = Field(None, description="start time as HH:MM:SS")
    EndTime: Optional[str] = Field(None, description="end time as HH:MM:SS")
    IsActive: Optional[bool] = Field(None, description="whether the schedule is active")


class UpdateScheduleArgs(FunctionArgs):
    ScheduleNum: IdValue = Field(None, description="schedule id")
    ProvNum: IdValue = Field(None, description="provider id")
    OpNum: IdValue = Field(None, description="operatory (room) id")
    ScheduleDate: Optional[str] = Field(None, description="schedule day as YYYY-MM-DD")
    StartTime: Optional[str] = Field(None, description="start time as HH:MM:SS")
    EndTime: Optional[str] = Field(None, description="end time as HH:MM:SS")
    IsActive: Optional[bool] = Field(None, description="whether the schedule is active")


class DeleteScheduleArgs(FunctionArgs):
    ScheduleNum: IdValue = Field(None, description="schedule id")


class CreateDefaultSchedulesArgs(FunctionArgs):
    ProvNum: IdValue = Field(None, description="provider id")
    OpNum: IdValue = Field(None, description="operatory (room) id")
    DateStart: Optional[str] = Field(None, description="first day as YYYY-MM-DD")
    DateEnd: Optional[str] = Field(None, description="last day as YYYY-MM-DD")
    StartTime: Optional[str] = Field(None, description="daily start time as HH:MM:SS")
    EndTime: Optional[str] = Field(None, description="daily end time as HH:MM:SS")
    IncludeWeekends: Optional[bool] = Field(None, description="also create weekend schedules")


class CheckScheduleConflictsArgs(FunctionArgs):
    ProvNum: IdValue = Field(None, description="provider id")
    OpNum: IdValue = Field(None, description="operatory (room) id")
    ScheduleDate: Optional[str] = Field(None, description="schedule day as YYYY-MM-DD")
    StartTime: Optional[str] = Field(None, description="start time as HH:MM:SS")
    EndTime: Optional[str] = Field(None, description="end time as HH:MM:SS")
    ExcludeScheduleNum: IdValue = Field(None, description="schedule id to ignore")


FUNCTION_ARG_MODELS: Dict[str, Type[FunctionArgs]] = {
    "GetMultiplePatients": GetMultiplePatientsArgs,
    "GetPatient": GetPatientArgs,
    "CreatePatient": CreatePatientArgs,
    "UpdatePatient": UpdatePatientArgs,
    "GetAppointments": GetAppointmentsArgs,
    "GetAvailableSlots": GetAvailableSlotsArgs,
    "CreateAppointment": CreateAppointmentArgs,
    "UpdateAppointment": UpdateAppointmentArgs,
    "BreakAppointment": BreakAppointmentArgs,
    "DeleteAppointment": DeleteAppointmentArgs,
    "GetSchedule": GetScheduleArgs,
    "GetProviderSchedules": GetProviderSchedulesArgs,
    "CreateSchedule": CreateScheduleArgs,
    "UpdateSchedule": UpdateScheduleArgs,
    "DeleteSchedule": DeleteScheduleArgs,
    "CreateDefaultSchedules": CreateDefaultSchedulesArgs,
    "CheckScheduleConflicts": CheckScheduleConflictsArgs,
}


def _sanitize_tool_arg(value: Any) -> Any:
    """Sanitize tool arguments - None, blank strings and 'null' literals become None."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value or value.lower() in ("null", "none", "undefined"):
            return None
    return value


def is_empty_arg(value: Any) -> bool:
    return _sanitize_tool_arg(value) is None
