from datetime import date

from services.extraction_service import (
    extract,
    extract_birthdate,
    extract_date_preference,
    extract_email,
    extract_intent,
    extract_name,
    extract_phone,
    extract_time_preference,
)
from models.state import Intent, MessageRole
from services.conversation_service import ingest_message

# A Monday
TODAY = date(2025, 12, 1)


def test_full_name_from_introduction():
    assert extract_name("Hi, my name is John Smith") == {
        "patient.first_name": "John",
        "patient.last_name": "Smith",
    }
    assert extract_name("This is Sarah Jones calling") == {
        "patient.first_name": "Sarah",
        "patient.last_name": "Jones",
    }


def test_name_is_not_guessed_from_ordinary_phrases():
    assert extract_name("i'm looking for an appointment") == {}
    assert extract_name("It's Tuesday, right?") == {}
    assert extract_name("I'm calling about my cleaning") == {}


def test_call_me_needs_a_capitalised_name():
    assert extract_name("Call me Sarah") == {"patient.first_name": "Sarah"}
    assert extract_name("Can you call me back tomorrow?") == {}
    assert extract_name("could you call me later") == {}
    assert extract_name("Please Call me Anytime") == {}


def test_names_needs_an_apostrophe():
    assert extract_name("what are the names of your dentists") == {}
    assert extract_name("Names of your hygienists?") == {}
    assert extract_name("the name's Bond, James Bond") == {"patient.first_name": "Bond"}


def test_callback_request_does_not_block_a_later_introduction(state):
    ingest_message(state, MessageRole.USER, "Could you call me later", TODAY)
    ingest_message(state, MessageRole.USER, "my name is John Smith", TODAY)

    assert state.patient.first_name == "John"
    assert state.patient.last_name == "Smith"


def test_numeric_phone():
    assert extract_phone("You can reach me at (619) 555-1234.") == "6195551234"
    assert extract_phone("it's 1-619-555-1234") == "6195551234"


def test_two_different_phones_are_ambiguous():
    assert extract_phone("619-555-1234 or maybe 858-555-9876") is None


def test_birthdate_needs_birth_wording_or_an_old_year():
    assert extract_birthdate("I was born on August 12, 1988", TODAY) == "1988-08-12"
    assert extract_birthdate("my DOB is 8/12/88", TODAY) == "1988-08-12"
    assert extract_birthdate("1990-01-15", TODAY) == "1990-01-15"
    assert extract_birthdate("can I come in on 12/15/2025?", TODAY) is None
    assert extract_birthdate("born 1988-13-40", TODAY) is None


def test_date_preference():
    assert extract_date_preference("tomorrow works", TODAY) == "2025-12-02"
    assert extract_date_preference("today if possible", TODAY) == "2025-12-01"
    assert extract_date_preference("how about next Friday", TODAY) == "2025-12-05"
    assert extract_date_preference("Friday please", TODAY) == "2025-12-05"
    assert extract_date_preference("December 15th", TODAY) == "2025-12-15"
    assert extract_date_preference("11/3", TODAY) == "2026-11-03"
    assert extract_date_preference("my birthday is December 15", TODAY) is None
    assert extract_date_preference("Monday or Tuesday", TODAY) is None


def test_time_preference():
    assert extract_time_preference("afternoon is better") == "afternoon"
    assert extract_time_preference("at 2:30 pm") == "14:30"
    assert extract_time_preference("10 am") == "10:00"
    assert extract_time_preference("12 am") == "00:00"
    assert extract_time_preference("I need 2 fillings") is None


def test_phone_digits_are_not_read_as_a_time():
    found = extract("my number is 619-555-1234", TODAY)
    assert found["patient.phone"] == "6195551234"
    assert "appointment.time" not in found


def test_email_written_and_spoken():
    assert extract_email("it's jane.doe@gmail.com") == "jane.doe@gmail.com"
    assert extract_email("my email is john dot smith at gmail dot com") == "john.smith@gmail.com"
    assert extract_email("a@b.com or c@d.com") is None


def test_intent():
    assert extract_intent("I need to cancel my appointment") is Intent.CANCEL
    assert extract_intent("can I reschedule?") is Intent.RESCHEDULE
    assert extract_intent("when is my appointment") is Intent.CHECK
    assert extract_intent("I'd like to book a cleaning") is Intent.BOOK
    assert extract_intent("hello") is Intent.UNKNOWN


def test_extract_combines_facts_from_one_turn():
    found = extract("Hi, my name is John Smith, I'm a new patient and I'd like a cleaning appointment tomorrow at 10 am", TODAY)

    assert found == {
        "patient.first_name": "John",
        "patient.last_name": "Smith",
        "patient.is_new_patient": True,
        "appointment.type": "cleaning",
        "appointment.date": "2025-12-02",
        "appointment.time": "10:00",
        "intent": "book",
    }


def test_empty_turn():
    assert extract("   ") == {}
