"""
Conversation state, slot merge policy, and advisory stage tracking.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Optional, Dict, Any, List, Mapping, FrozenSet

from config import ABANDONED_AFTER_MINUTES, CHANNEL_PREFIXES, DEFAULT_CHANNEL, logger
from models.tool_args import _sanitize_tool_arg


# =============================================================================
# ENUMS
# =============================================================================

class Channel(str, Enum):
    VOICE = "voice"
    SMS = "sms"
    WHATSAPP = "whatsapp"
    WEB = "web"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Intent(str, Enum):
    BOOK = "book"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    CHECK = "check"
    UNKNOWN = "unknown"


class ConversationStage(str, Enum):
    COLLECTING_IDENTITY = "collecting_identity"
    COLLECTING_APPOINTMENT = "collecting_appointment"
    CONFIRMING = "confirming"
    BOOKED = "booked"
    ABANDONED = "abandoned"


class SlotSource(str, Enum):
    """Where an incoming slot value came from."""
    DETERMINISTIC = "deterministic"
    LLM_EXTRACTION = "llm_extraction"
    CALLER = "caller"
    HANDLER = "handler"


_S = ConversationStage

# Advisory: transitions outside this table are logged, not refused
STAGE_TRANSITIONS: Dict[ConversationStage, FrozenSet[ConversationStage]] = {
    _S.COLLECTING_IDENTITY: frozenset({_S.COLLECTING_APPOINTMENT, _S.CONFIRMING, _S.BOOKED, _S.ABANDONED}),
    _S.COLLECTING_APPOINTMENT: frozenset({_S.COLLECTING_IDENTITY, _S.CONFIRMING, _S.BOOKED, _S.ABANDONED}),
    _S.CONFIRMING: frozenset({_S.COLLECTING_APPOINTMENT, _S.BOOKED, _S.ABANDONED}),
    _S.BOOKED: frozenset({_S.COLLECTING_APPOINTMENT}),
    _S.ABANDONED: frozenset({_S.COLLECTING_IDENTITY, _S.COLLECTING_APPOINTMENT, _S.CONFIRMING, _S.BOOKED}),
}


# =============================================================================
# SLOT PATHS
# =============================================================================

PATIENT_SLOTS = ("first_name", "last_name", "phone", "birthdate", "email", "is_new_patient")
APPOINTMENT_SLOTS = ("type", "date", "time", "provider_id", "operatory_id", "note")
IDENTIFIER_KEYS = ("patient_id", "appointment_id")

SLOT_PATHS: FrozenSet[str] = frozenset(
    [f"patient.{s}" for s in PATIENT_SLOTS]
    + [f"appointment.{s}" for s in APPOINTMENT_SLOTS]
    + [f"identifiers.{k}" for k in IDENTIFIER_KEYS]
)

# Critical identifier fields: writable only from a successful handler result
CRITICAL_SLOT_PATHS: FrozenSet[str] = frozenset(f"identifiers.{k}" for k in IDENTIFIER_KEYS)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def detect_channel(session_id: str) -> Channel:
    """Infer the channel from the session id prefix set by each adapter."""
    for prefix, channel in CHANNEL_PREFIXES.items():
        if session_id.startswith(prefix):
            return Channel(channel)
    return Channel(DEFAULT_CHANNEL)


def has_correction_intent(text: str) -> bool:
    """Detect if user is trying to correct a previous value."""
    if not text:
        return False
    patterns = [
        r"\bactually\b",
        r"\bsorry\b",
        r"\bi\s+mean\b",
        r"\bnot\s+that\b",
        r"\bchange\s+it\b",
        r"\binstead\b",
        r"\bmake\s+it\b",
        r"\brather\b",
        r"\bwrong\b",
        r"\bmistake\b",
        r"\bcorrection\b",
    ]
    regex = re.compile("|".join(patterns), re.IGNORECASE)
    return bool(regex.search(text))


def _same_value(a: Any, b: Any) -> bool:
    return str(a).strip().lower() == str(b).strip().lower()


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class ConversationMessage:
    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role.value, "content": self.content, "timestamp": self.timestamp.isoformat()}


@dataclass(frozen=True)
class OverrideEvent:
    """An incoming value that lost to an existing authoritative value (or had no authority)."""
    field: str
    kept: Any
    discarded: Any
    source: SlotSource
    reason: str
    function_name: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "kept": self.kept,
            "discarded": self.discarded,
            "source": self.source.value,
            "reason": self.reason,
            "functionName": self.function_name,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class CallRecord:
    """One Call Ledger entry. Parameter maps are deep-copied and read-only."""
    function_name: str
    resolved_parameters: Mapping[str, Any]
    auto_filled_fields: Mapping[str, Any]
    category: str
    result: Any = None
    error_message: Optional[str] = None
    extraction: Optional[Mapping[str, Any]] = None
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def create(
        cls,
        function_name: str,
        resolved_parameters: Dict[str, Any],
        auto_filled_fields: Dict[str, Any],
        category: str,
        result: Any = None,
        error_message: Optional[str] = None,
        extraction: Optional[Dict[str, Any]] = None,
    ) -> "CallRecord":
        return cls(
            function_name=function_name,
            resolved_parameters=MappingProxyType(copy.deepcopy(dict(resolved_parameters or {}))),
            auto_filled_fields=MappingProxyType(copy.deepcopy(dict(auto_filled_fields or {}))),
            category=category,
            result=copy.deepcopy(result),
            error_message=error_message,
            extraction=MappingProxyType(copy.deepcopy(extraction)) if extraction else None,
        )

    @property
    def succeeded(self) -> bool:
        return self.category == "success"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "functionName": self.function_name,
            "parameters": dict(self.resolved_parameters),
            "autoFilledParams": dict(self.auto_filled_fields),
            "category": self.category,
            "result": copy.deepcopy(self.result),
            "error": self.error_message,
            "extraction": dict(self.extraction) if self.extraction else None,
        }


@dataclass
class MergeReport:
    applied: Dict[str, Any] = field(default_factory=dict)
    skipped: Dict[str, Any] = field(default_factory=dict)
    overrides: List[OverrideEvent] = field(default_factory=list)


# =============================================================================
# SLOT CONTAINERS
# =============================================================================

@dataclass
class PatientSlots:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    birthdate: Optional[str] = None  # YYYY-MM-DD
    email: Optional[str] = None
    is_new_patient: Optional[bool] = None


@dataclass
class AppointmentSlots:
    type: Optional[str] = None
    date: Optional[str] = None  # YYYY-MM-DD
    time: Optional[str] = None  # HH:MM or morning/afternoon/evening
    provider_id: Optional[int] = None
    operatory_id: Optional[int] = None
    note: Optional[str] = None


# =============================================================================
# CONVERSATION STATE
# =============================================================================

@dataclass
class ConversationState:
    """Everything this core knows about one session."""
    session_id: str
    channel: Channel = Channel.VOICE
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    patient: PatientSlots = field(default_factory=PatientSlots)
    appointment: AppointmentSlots = field(default_factory=AppointmentSlots)
    identifiers: Dict[str, Any] = field(default_factory=dict)

    intent: Intent = Intent.UNKNOWN
    stage: ConversationStage = ConversationStage.COLLECTING_IDENTITY

    messages: List[ConversationMessage] = field(default_factory=list)
    call_log: List[CallRecord] = field(default_factory=list)
    override_events: List[OverrideEvent] = field(default_factory=list)

    # slot path -> index of the message that set it (None when not from a message)
    slot_origins: Dict[str, Optional[int]] = field(default_factory=dict)
    # conversationHistory entries already consumed, empty ones included
    history_cursor: int = 0

    @classmethod
    def new(cls, session_id: str) -> "ConversationState":
        return cls(session_id=session_id, channel=detect_channel(session_id))

    # -------------------------------------------------------------------------
    # Messages & ledger (append-only)
    # -------------------------------------------------------------------------

    def add_message(self, role: MessageRole, content: str) -> int:
        """Append a message and return its index."""
        self.messages.append(ConversationMessage(role=role, content=content))
        self.touch()
        return len(self.messages) - 1

    def append_call_record(self, record: CallRecord) -> None:
        self.call_log.append(record)
        self.touch()

    def touch(self) -> None:
        self.updated_at = utc_now()

    # -------------------------------------------------------------------------
    # Slot access
    # -------------------------------------------------------------------------

    def get_slot(self, path: str) -> Any:
        group, _, name = path.partition(".")
        if group == "identifiers":
            return self.identifiers.get(name)
        container = self.patient if group == "patient" else self.appointment if group == "appointment" else None
        if container is None:
            raise KeyError(path)
        return getattr(container, name)

    def _set_slot(self, path: str, value: Any, origin: Optional[int]) -> None:
        group, _, name = path.partition(".")
        if group == "identifiers":
            self.identifiers[name] = value
        elif group == "patient":
            setattr(self.patient, name, value)
        else:
            setattr(self.appointment, name, value)
        self.slot_origins[path] = origin

    def record_override(self, event: OverrideEvent) -> None:
        self.override_events.append(event)
        logger.warning(
            f"[OVERRIDE] 🛡️ {self.session_id}: kept {event.field}={event.kept!r}, "
            f"discarded {event.discarded!r} from {event.source.value} ({event.reason})"
        )

    def merge(
        self,
        partial: Mapping[str, Any],
        source: SlotSource,
        origin: Optional[int] = None,
        correction: bool = False,
        function_name: Optional[str] = None,
    ) -> MergeReport:
        """
        Field-by-field merge of slot values.

        - Critical identifiers accept values only from a handler result; any
          other source is discarded and recorded as an override event.
        - Other slots: fill empty slots; replace a set slot only for a
          correction, a handler result, or a re-extraction of the same message.
        """
        report = MergeReport()
        authoritative = source is SlotSource.HANDLER

        for path, incoming in partial.items():
            if path == "intent":
                self._merge_intent(incoming)
                continue
            if path not in SLOT_PATHS:
                logger.warning(f"[STATE] Ignoring unknown slot '{path}' from {source.value}")
                continue

            value = _sanitize_tool_arg(incoming)
            if value is None:
                continue
            current = self.get_slot(path)

            if path in CRITICAL_SLOT_PATHS:
                if not authoritative:
                    if current is None or not _same_value(current, value):
                        event = OverrideEvent(
                            field=path,
                            kept=current,
                            discarded=value,
                            source=source,
                            reason="authoritative_value_kept" if current is not None else "unauthoritative_source",
                            function_name=function_name,
                        )
                        self.record_override(event)
                        report.overrides.append(event)
                    continue
                if current is not None and not _same_value(current, value):
                    logger.info(f"[STATE] 🔁 {path}: {current!r} -> {value!r} (handler result for {function_name})")
                self._set_slot(path, value, None)
                report.applied[path] = value
                continue

            if current is None:
                self._set_slot(path, value, origin)
                report.applied[path] = value
                logger.info(f"[UPDATE] ✅ Setting {path}: {value!r} (first time, {source.value})")
            elif _same_value(current, value):
                continue
            elif authoritative or correction or (origin is not None and self.slot_origins.get(path) == origin):
                logger.info(f"[UPDATE] ✏️ Overwriting {path}: {current!r} -> {value!r} ({source.value})")
                self._set_slot(path, value, origin)
                report.applied[path] = value
            else:
                logger.info(f"[UPDATE] 🛡️ Ignoring {path} change: {current!r} -> {value!r} (no correction intent)")
                report.skipped[path] = value

        if report.applied:
            self.touch()
        return report

    def _merge_intent(self, incoming: Any) -> None:
        try:
            intent = Intent(incoming)
        except ValueError:
            return
        if intent is not Intent.UNKNOWN:
            self.intent = intent

    # -------------------------------------------------------------------------
    # Stage tracking (advisory)
    # -------------------------------------------------------------------------

    def advance_stage(self, target: ConversationStage, reason: str = "") -> None:
        if target is self.stage:
            return
        if target not in STAGE_TRANSITIONS[self.stage]:
            logger.warning(f"[STAGE] ⚠️ Unusual transition {self.stage.value} -> {target.value} ({reason})")
        else:
            logger.debug(f"[STAGE] {self.stage.value} -> {target.value} ({reason})")
        self.stage = target

    def derive_stage(self) -> ConversationStage:
        """Descriptive stage from what is currently known."""
        if self.stage is ConversationStage.BOOKED:
            return ConversationStage.BOOKED
        if self.identifiers.get("patient_id") is None:
            return ConversationStage.COLLECTING_IDENTITY
        if self.appointment.date and self.appointment.time:
            return ConversationStage.CONFIRMING
        return ConversationStage.COLLECTING_APPOINTMENT

    def refresh_stage(self, reason: str = "slots changed") -> None:
        self.advance_stage(self.derive_stage(), reason)

    # -------------------------------------------------------------------------
    # Summaries
    # -------------------------------------------------------------------------

    def missing_required(self) -> List[str]:
        """What the conversation still needs, given the detected intent."""
        missing = []
        if (
            self.identifiers.get("patient_id") is None
            and not self.patient.first_name
            and not self.patient.phone
        ):
            missing.append("patient_name_or_phone")

        if self.intent is Intent.BOOK:
            if not self.appointment.type:
                missing.append("appointment_type")
            if not self.appointment.date:
                missing.append("preferred_date")
            if not self.appointment.time:
                missing.append("preferred_time")
            if self.patient.is_new_patient:
                if not self.patient.birthdate:
                    missing.append("birthdate")
                if not self.patient.phone:
                    missing.append("phone")

        if self.intent in (Intent.RESCHEDULE, Intent.CANCEL):
            if self.identifiers.get("appointment_id") is None and self.identifiers.get("patient_id") is None:
                missing.append("patient_identification")
        return missing

    def slot_summary(self) -> str:
        """Human-readable slot summary for logging."""
        p, a = self.patient, self.appointment
        name = " ".join(x for x in (p.first_name, p.last_name) if x) or "?"
        return (
            f"name={name}, "
            f"phone={('***' + p.phone[-4:]) if p.phone else '?'}, "
            f"dob={p.birthdate or '?'}, "
            f"patient_id={self.identifiers.get('patient_id', '?')}, "
            f"type={a.type or '?'}, "
            f"when={a.date or '?'} {a.time or ''}".rstrip()
        )

    def summary(self) -> str:
        p, a = self.patient, self.appointment
        lines = [
            f"Session: {self.session_id} ({self.channel.value})",
            f"Intent: {self.intent.value}",
            f"Stage: {self.stage.value}",
            "",
            "Patient Info:",
            f"  - Name: {p.first_name or '?'} {p.last_name or '?'}",
            f"  - Phone: {p.phone or '?'}",
            f"  - DOB: {p.birthdate or '?'}",
            f"  - PatNum: {self.identifiers.get('patient_id', 'not found')}",
            f"  - New Patient: {'yes' if p.is_new_patient else 'no'}",
            "",
            "Appointment Info:",
            f"  - Type: {a.type or '?'}",
            f"  - Date: {a.date or '?'}",
            f"  - Time: {a.time or '?'}",
            f"  - AptNum: {self.identifiers.get('appointment_id', 'none')}",
            "",
            f"Missing: {', '.join(self.missing_required()) or 'nothing'}",
            f"Function Calls: {len(self.call_log)}",
        ]
        return "\n".join(lines)

    def outcome(self, now: Optional[datetime] = None) -> str:
        if self.stage is ConversationStage.BOOKED:
            return "completed"
        if self.messages:
            idle = (now or utc_now()) - self.messages[-1].timestamp
            if idle > timedelta(minutes=ABANDONED_AFTER_MINUTES):
                return "abandoned"
        return "in_progress"

    def export(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Snapshot for operators and durable storage (wire names are camelCase)."""
        p, a = self.patient, self.appointment
        return {
            "sessionId": self.session_id,
            "channel": self.channel.value,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "intent": self.intent.value,
            "stage": self.stage.value,
            "outcome": self.outcome(now),
            "patient": {
                "firstName": p.first_name,
                "lastName": p.last_name,
                "phone": p.phone,
                "birthdate": p.birthdate,
                "email": p.email,
                "isNewPatient": p.is_new_patient,
            },
            "appointment": {
                "type": a.type,
                "date": a.date,
                "time": a.time,
                "providerId": a.provider_id,
                "operatoryId": a.operatory_id,
                "note": a.note,
            },
            "identifiers": {
                "patientId": self.identifiers.get("patient_id"),
                "appointmentId": self.identifiers.get("appointment_id"),
            },
            "missingRequired": self.missing_required(),
            "messageCount": len(self.messages),
            "messages": [m.to_dict() for m in self.messages],
            "functionCallCount": len(self.call_log),
            "functionCalls": [r.to_dict() for r in self.call_log],
            "overrideEvents": [e.to_dict() for e in self.override_events],
        }
