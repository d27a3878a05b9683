import pytest

from exceptions import ValidationError
from services.validation_service import ASK_USER, Validator


@pytest.fixture
def validator():
    return Validator()


def test_birthdate_must_be_a_real_date(validator):
    params = {"FName": "John", "LName": "Smith", "Birthdate": "1988-13-40", "WirelessPhone": "6195551234"}

    result = validator.validate("CreatePatient", params)
    assert not result.valid
    assert [bad.field for bad in result.invalid_fields] == ["Birthdate"]
    assert result.missing_fields == []

    params["Birthdate"] = "1988-08-12"
    assert validator.validate("CreatePatient", params).valid


def test_phone_must_have_ten_digits(validator):
    result = validator.validate(
        "CreatePatient", {"FName": "John", "LName": "Smith", "Birthdate": "1988-08-12", "WirelessPhone": "555-1234"}
    )

    assert [bad.field for bad in result.invalid_fields] == ["WirelessPhone"]
    assert "10 digits" in result.message()


def test_patient_search_without_any_option(validator):
    result = validator.validate("GetMultiplePatients", {})
    payload = result.to_payload()

    assert not result.valid
    assert payload["action"] == ASK_USER
    assert payload["options"] == [
        'Search by name: { LName: "Smith", FName: "John" }',
        'Search by phone: { Phone: "6195551234" }',
        "Search by ID: { PatNum: 1 }",
    ]
    assert result.fields_needing_values() == ["LName", "FName", "Phone"]


def test_a_partial_name_is_not_a_search_option(validator):
    assert not validator.validate("GetMultiplePatients", {"LName": "Smith"}).valid
    assert validator.validate("GetMultiplePatients", {"LName": "Smith", "FName": "John"}).valid
    assert validator.validate("GetMultiplePatients", {"Phone": "(619) 555-1234"}).valid


def test_booking_lists_every_missing_field(validator):
    result = validator.validate("CreateAppointment", {"PatNum": 1, "AptDateTime": "2025-12-05 10:00:00"})
    payload = result.to_payload()

    assert payload["missingFields"] == ["ProvNum", "Op"]
    assert payload["required"] == ["PatNum", "AptDateTime", "ProvNum", "Op"]
    assert payload["received"] == {"PatNum": 1, "AptDateTime": "2025-12-05 10:00:00"}
    assert "GetAvailableSlots" in payload["message"]


def test_malformed_booking_time(validator):
    result = validator.validate(
        "CreateAppointment", {"PatNum": 1, "AptDateTime": "December 5 at 10", "ProvNum": 1, "Op": 1}
    )
    assert result.invalid_fields[0].expected.startswith("YYYY-MM-DD HH:MM:SS")


def test_critical_fields_are_never_requested_from_extraction(validator):
    result = validator.validate("CreateAppointment", {})
    assert "PatNum" not in result.fields_needing_values()
    assert "AptDateTime" in result.fields_needing_values()


def test_unregistered_function_is_valid(validator):
    result = validator.validate("GetProviders", {"anything": 1})
    assert result.valid
    assert result.schema is None


def test_payload_carries_extraction_details(validator):
    result = validator.validate("CreatePatient", {})
    payload = result.to_payload({"attempted": True, "error": "timeout after 3.0s"})

    assert payload["extractionAttempted"] is True
    assert payload["extraction"]["error"] == "timeout after 3.0s"
    assert "create your profile" in payload["message"]

    error = result.to_error()
    assert isinstance(error, ValidationError)
    assert error.to_response()["missingFields"] == ["FName", "LName", "Birthdate", "WirelessPhone"]


def test_missing_profile_fields_are_listed_as_a_sentence(validator):
    message = validator.validate("CreatePatient", {"FName": "John", "LName": "Smith"}).to_payload()["message"]
    assert "I'll need your date of birth and phone number to create your profile." in message

    message = validator.validate("CreatePatient", {}).to_payload()["message"]
    assert "first name, last name, date of birth and phone number" in message
    assert ", and" not in message
