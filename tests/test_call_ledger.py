from unittest.mock import MagicMock

import pytest

from config import FUNCTION_CALLS_TABLE
from models.state import ConversationStage
from services.call_ledger import CallLedger, SUCCESS, VALIDATION
from utils.call_logger import CallLogger


@pytest.fixture
def ledger(call_logger):
    return CallLedger(call_logger=call_logger)


def test_created_patient_id_is_promoted_on_success(ledger, state):
    ledger.record(state, state.session_id, "CreatePatient", {"FName": "John"}, {}, SUCCESS, result={"PatNum": 42})

    assert state.identifiers["patient_id"] == 42
    assert state.stage is ConversationStage.COLLECTING_APPOINTMENT
    assert len(state.call_log) == 1


def test_failed_calls_promote_nothing(ledger, state):
    ledger.record(
        state, state.session_id, "CreatePatient", {}, {}, VALIDATION,
        result={"PatNum": 42}, error_message="Missing: FName",
    )

    assert state.identifiers == {}
    assert state.call_log[0].error_message == "Missing: FName"


def test_ambiguous_patient_search_promotes_nothing(ledger, state):
    matches = [{"PatNum": 1, "FName": "John", "LName": "Smith"}, {"PatNum": 2, "FName": "John", "LName": "Smith"}]
    ledger.record(state, state.session_id, "GetMultiplePatients", {"LName": "Smith", "FName": "John"}, {}, SUCCESS, result=matches)

    assert "patient_id" not in state.identifiers


def test_records_are_immutable_snapshots(ledger, state):
    params = {"PatNum": 7, "nested": {"a": 1}}
    record = ledger.record(state, state.session_id, "GetPatient", params, {"PatNum": 7}, SUCCESS, result={"PatNum": 7})

    params["nested"]["a"] = 2
    assert record.resolved_parameters["nested"] == {"a": 1}
    with pytest.raises(TypeError):
        record.resolved_parameters["PatNum"] = 8
    with pytest.raises(AttributeError):
        record.category = "system"


def test_scheduled_booking_marks_session_booked(ledger, known_patient_state):
    ledger.record(
        known_patient_state, known_patient_state.session_id, "CreateAppointment",
        {"PatNum": 7, "AptDateTime": "2025-12-05 10:00:00", "ProvNum": 1, "Op": 1, "AptStatus": "Scheduled"},
        {"PatNum": 7}, SUCCESS, result={"AptNum": 300},
    )

    assert known_patient_state.stage is ConversationStage.BOOKED
    assert known_patient_state.identifiers["appointment_id"] == 300


def test_broken_appointment_update_is_not_a_booking(ledger, known_patient_state):
    ledger.record(
        known_patient_state, known_patient_state.session_id, "UpdateAppointment",
        {"AptNum": 300, "AptStatus": "Broken"}, {}, SUCCESS, result={"AptNum": 300},
    )

    assert known_patient_state.stage is not ConversationStage.BOOKED


def test_sessionless_calls_are_logged_only(ledger):
    record = ledger.record(None, None, "GetProviders", {}, {}, SUCCESS, result=[{"ProvNum": 1}])
    assert record.succeeded


async def test_records_are_flushed_with_phones_masked(state):
    supabase = MagicMock()
    call_logger = CallLogger(environment="test", supabase_client=supabase, persist=True)
    ledger = CallLedger(call_logger=call_logger)

    ledger.record(
        state, state.session_id, "CreatePatient",
        {"FName": "John", "WirelessPhone": "6195551234"}, {"WirelessPhone": "6195551234"},
        SUCCESS, result={"PatNum": 42},
    )
    assert call_logger.buffered == 1
    await call_logger.flush_to_supabase()

    supabase.table.assert_called_once_with(FUNCTION_CALLS_TABLE)
    rows = supabase.table.return_value.insert.call_args.args[0]
    assert rows[0]["parameters"]["WirelessPhone"] == "***1234"
    assert rows[0]["auto_filled_params"]["WirelessPhone"] == "***1234"
    assert rows[0]["session_id"] == state.session_id
    assert call_logger.buffered == 0


async def test_full_buffer_flushes_in_the_background(state):
    supabase = MagicMock()
    call_logger = CallLogger(environment="test", supabase_client=supabase, persist=True, max_buffer_size=2)
    ledger = CallLedger(call_logger=call_logger)

    ledger.record(state, state.session_id, "GetPatient", {"PatNum": 1}, {}, SUCCESS)
    ledger.record(state, state.session_id, "GetPatient", {"PatNum": 1}, {}, SUCCESS)
    await call_logger.flush_to_supabase()

    assert supabase.table.return_value.insert.call_count == 1
    assert len(supabase.table.return_value.insert.call_args.args[0]) == 2


async def test_storage_outage_does_not_raise(state):
    supabase = MagicMock()
    supabase.table.side_effect = RuntimeError("connection refused")
    call_logger = CallLogger(environment="test", supabase_client=supabase, persist=True)

    CallLedger(call_logger=call_logger).record(state, state.session_id, "GetPatient", {"PatNum": 1}, {}, SUCCESS)
    await call_logger.flush_to_supabase()

    assert call_logger.buffered == 0
