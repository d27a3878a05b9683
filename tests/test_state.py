from datetime import timedelta

from models.state import (
    Channel,
    ConversationStage,
    ConversationState,
    Intent,
    MessageRole,
    SlotSource,
    detect_channel,
    has_correction_intent,
)


def test_channel_from_session_prefix():
    assert detect_channel("whatsapp_+16195551234") is Channel.WHATSAPP
    assert detect_channel("lexi_twilio_abc") is Channel.SMS
    assert detect_channel("twilio_CA123") is Channel.VOICE
    assert detect_channel("web_abc") is Channel.WEB
    assert detect_channel("something-else") is Channel.VOICE


def test_empty_slots_are_filled(state):
    report = state.merge({"patient.first_name": "John", "patient.phone": ""}, SlotSource.DETERMINISTIC, origin=0)

    assert report.applied == {"patient.first_name": "John"}
    assert state.patient.first_name == "John"
    assert state.patient.phone is None


def test_set_slot_is_kept_without_correction(state):
    state.merge({"patient.first_name": "John"}, SlotSource.DETERMINISTIC, origin=0)
    report = state.merge({"patient.first_name": "Jon"}, SlotSource.DETERMINISTIC, origin=2)

    assert state.patient.first_name == "John"
    assert report.skipped == {"patient.first_name": "Jon"}


def test_correction_replaces_value(state):
    state.merge({"patient.last_name": "Smith"}, SlotSource.DETERMINISTIC, origin=0)
    state.merge({"patient.last_name": "Smyth"}, SlotSource.DETERMINISTIC, origin=2, correction=True)

    assert state.patient.last_name == "Smyth"


def test_same_message_reextraction_replaces_value(state):
    state.merge({"appointment.time": "morning"}, SlotSource.DETERMINISTIC, origin=4)
    state.merge({"appointment.time": "09:30"}, SlotSource.LLM_EXTRACTION, origin=4)

    assert state.appointment.time == "09:30"


def test_handler_values_replace_slots(state):
    state.merge({"patient.first_name": "Jon"}, SlotSource.DETERMINISTIC, origin=0)
    state.merge({"patient.first_name": "John"}, SlotSource.HANDLER)

    assert state.patient.first_name == "John"


def test_identifiers_only_come_from_handlers(state):
    report = state.merge({"identifiers.patient_id": 99}, SlotSource.LLM_EXTRACTION)

    assert state.identifiers == {}
    assert len(report.overrides) == 1
    assert report.overrides[0].reason == "unauthoritative_source"
    assert state.override_events == report.overrides


def test_identifier_is_never_replaced_by_caller(known_patient_state):
    report = known_patient_state.merge({"identifiers.patient_id": 99}, SlotSource.CALLER, function_name="GetPatient")

    assert known_patient_state.identifiers["patient_id"] == 7
    event = report.overrides[0]
    assert (event.kept, event.discarded, event.source) == (7, 99, SlotSource.CALLER)
    assert event.reason == "authoritative_value_kept"
    assert event.to_dict()["functionName"] == "GetPatient"


def test_repeating_the_known_identifier_is_not_an_override(known_patient_state):
    report = known_patient_state.merge({"identifiers.patient_id": "7"}, SlotSource.CALLER)

    assert report.overrides == []
    assert known_patient_state.override_events == []


def test_unknown_slots_are_ignored(state):
    report = state.merge({"patient.shoe_size": 11}, SlotSource.DETERMINISTIC)
    assert report.applied == {}


def test_intent_merge_ignores_unknown(state):
    state.merge({"intent": "cancel"}, SlotSource.DETERMINISTIC)
    state.merge({"intent": "unknown"}, SlotSource.DETERMINISTIC)
    state.merge({"intent": "dance"}, SlotSource.DETERMINISTIC)

    assert state.intent is Intent.CANCEL


def test_correction_wording():
    assert has_correction_intent("Actually it's Smyth")
    assert has_correction_intent("sorry, I mean Tuesday")
    assert not has_correction_intent("My name is John")


def test_stage_follows_known_slots(state):
    assert state.derive_stage() is ConversationStage.COLLECTING_IDENTITY

    state.merge({"identifiers.patient_id": 3}, SlotSource.HANDLER)
    state.refresh_stage()
    assert state.stage is ConversationStage.COLLECTING_APPOINTMENT

    state.merge({"appointment.date": "2025-12-05", "appointment.time": "10:00"}, SlotSource.DETERMINISTIC, origin=1)
    state.refresh_stage()
    assert state.stage is ConversationStage.CONFIRMING


def test_booked_stage_sticks(state):
    state.advance_stage(ConversationStage.BOOKED, "test")
    state.refresh_stage()
    assert state.stage is ConversationStage.BOOKED


def test_missing_required_for_new_patient_booking(state):
    state.merge(
        {"intent": "book", "patient.first_name": "John", "patient.is_new_patient": True, "appointment.type": "cleaning"},
        SlotSource.DETERMINISTIC,
        origin=0,
    )

    assert state.missing_required() == ["preferred_date", "preferred_time", "birthdate", "phone"]


def test_export_reports_idle_session_as_abandoned(state):
    state.add_message(MessageRole.USER, "hello")
    later = state.messages[-1].timestamp + timedelta(hours=2)

    exported = state.export(now=later)
    assert exported["outcome"] == "abandoned"
    assert exported["channel"] == "web"
    assert exported["messageCount"] == 1
    assert state.export()["outcome"] == "in_progress"


def test_export_reports_booked_session_as_completed(state):
    state.advance_stage(ConversationStage.BOOKED, "test")
    assert state.export()["outcome"] == "completed"
