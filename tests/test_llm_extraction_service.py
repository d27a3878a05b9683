import asyncio
from datetime import date

import httpx
import pytest
from openai import APIConnectionError

from conftest import fake_llm_client
from models.schemas import get_schema
from models.state import MessageRole
from services.conversation_service import ingest_message
from services.llm_extraction_service import LLMExtractionFallback, normalize_extracted_value

TODAY = date(2025, 12, 1)


@pytest.fixture
def intake_state(state):
    """Name and birthdate were caught by the pattern extractor; the spoken phone was not."""
    ingest_message(state, MessageRole.ASSISTANT, "Hi! Can I get your name?", TODAY)
    ingest_message(state, MessageRole.USER, "my name is John Smith", TODAY)
    ingest_message(state, MessageRole.USER, "I was born on August 12, 1988", TODAY)
    ingest_message(state, MessageRole.USER, "my number is six one nine five five five one two three four", TODAY)
    return state


async def test_spoken_phone_is_extracted_and_normalized(intake_state, make_fallback):
    assert intake_state.patient.phone is None
    fallback = make_fallback(payload={"WirelessPhone": "six one nine five five five one two three four"})

    result = await fallback.extract(intake_state, get_schema("CreatePatient"), ["WirelessPhone"])

    assert result.success
    assert result.filled == {"WirelessPhone": "6195551234"}
    assert intake_state.patient.phone == "6195551234"

    kwargs = fallback.client.chat.completions.create.await_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert "WirelessPhone" in kwargs["messages"][1]["content"]
    assert "six one nine" in kwargs["messages"][1]["content"]


async def test_timeout_is_an_unsuccessful_result(intake_state, make_fallback):
    fallback = make_fallback(payload={"WirelessPhone": "6195551234"}, delay=1.0)

    result = await fallback.extract(intake_state, get_schema("CreatePatient"), ["WirelessPhone"])

    assert not result.success
    assert result.error == "timeout after 0.2s"
    assert intake_state.patient.phone is None


async def test_malformed_output(intake_state, make_fallback):
    fallback = make_fallback(raw="Sure! The phone is 619 555 1234")

    result = await fallback.extract(intake_state, get_schema("CreatePatient"), ["WirelessPhone"])

    assert result.error.startswith("malformed LLM output")
    assert result.filled == {}


async def test_fenced_json_is_accepted(intake_state, make_fallback):
    fallback = make_fallback(raw='```json\n{"WirelessPhone": "619-555-1234"}\n```')

    result = await fallback.extract(intake_state, get_schema("CreatePatient"), ["WirelessPhone"])
    assert result.filled == {"WirelessPhone": "6195551234"}


async def test_api_error_is_contained(intake_state, call_logger):
    error = APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
    fallback = LLMExtractionFallback(
        client=fake_llm_client(error=error), timeout_sec=0.2, enabled=True, call_logger=call_logger
    )

    result = await fallback.extract(intake_state, get_schema("CreatePatient"), ["WirelessPhone"])

    assert result.attempted
    assert result.error.startswith("LLM API error")


async def test_non_openai_client_error_is_contained(intake_state, make_fallback):
    fallback = make_fallback(error=RuntimeError("socket closed"))

    result = await fallback.extract(intake_state, get_schema("CreatePatient"), ["WirelessPhone"])

    assert result.attempted
    assert result.error == "LLM client error: socket closed"
    assert result.filled == {}


async def test_unusable_values_are_rejected(intake_state, make_fallback):
    fallback = make_fallback(payload={"Birthdate": "sometime in the eighties", "Email": "not an address"})

    result = await fallback.extract(intake_state, get_schema("CreatePatient"), ["Birthdate", "Email"])

    assert result.rejected == {"Birthdate": "sometime in the eighties", "Email": "not an address"}
    assert result.error == "no usable values in extraction output"


async def test_critical_identifiers_are_never_requested_or_accepted(intake_state, make_fallback):
    fallback = make_fallback(payload={"PatNum": 99, "AptDateTime": "2025-12-05 10:00"})

    result = await fallback.extract(intake_state, get_schema("CreateAppointment"), ["PatNum", "AptDateTime"])

    assert result.requested == ["AptDateTime"]
    assert result.filled == {"AptDateTime": "2025-12-05 10:00:00"}
    assert "patient_id" not in intake_state.identifiers
    assert intake_state.appointment.date == "2025-12-05"
    assert intake_state.appointment.time == "10:00"


async def test_only_critical_fields_missing_skips_the_call(intake_state, make_fallback):
    fallback = make_fallback(payload={"PatNum": 99})

    result = await fallback.extract(intake_state, get_schema("GetPatient"), ["PatNum"])

    assert not result.attempted
    fallback.client.chat.completions.create.assert_not_awaited()


async def test_cancellation_propagates(intake_state, call_logger):
    fallback = LLMExtractionFallback(
        client=fake_llm_client(payload={"WirelessPhone": "6195551234"}, delay=5.0),
        timeout_sec=10.0,
        enabled=True,
        call_logger=call_logger,
    )
    task = asyncio.create_task(fallback.extract(intake_state, get_schema("CreatePatient"), ["WirelessPhone"]))
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


def test_should_run(state, make_fallback):
    fallback = make_fallback()
    assert not fallback.should_run(state)
    assert not fallback.should_run(None)

    state.add_message(MessageRole.USER, "hi")
    assert fallback.should_run(state)

    fallback.enabled = False
    assert not fallback.should_run(state)


def test_value_normalization():
    assert normalize_extracted_value("Birthdate", "August 12, 1988") == "1988-08-12"
    assert normalize_extracted_value("Phone", "(619) 555-1234") == "6195551234"
    assert normalize_extracted_value("ProvNum", "2") == 2
    assert normalize_extracted_value("StartTime", "09:00") == "09:00:00"
    assert normalize_extracted_value("Email", "jane at gmail dot com") == "jane@gmail.com"
    assert normalize_extracted_value("FName", "J0hn") is None
    assert normalize_extracted_value("LName", "null") is None
