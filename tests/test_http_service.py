import pytest
from fastapi.testclient import TestClient

from http_service import create_app
from utils.contact_utils import today_in_clinic_tz
from tools.handler_registry import HandlerRegistry


@pytest.fixture
def client(store, make_fallback, call_logger):
    handlers = HandlerRegistry()

    @handlers.handler("GetMultiplePatients")
    async def search(params):
        return [{"PatNum": 5, "FName": params.get("FName"), "LName": params.get("LName")}]

    app = create_app(store=store, handlers=handlers, fallback=make_fallback(), call_logger=call_logger)
    with TestClient(app) as test_client:
        yield test_client


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_booking_rejects_bodies_that_are_not_json_objects(client):
    response = client.post("/api/booking", content="not json", headers={"content-type": "application/json"})
    assert response.status_code == 400

    response = client.post("/api/booking", json=[1, 2])
    assert response.status_code == 400

    response = client.post("/api/booking", json={"parameters": {}})
    assert response.status_code == 400
    assert response.json()["message"] == "functionName is required"


def test_booking_runs_the_pipeline(client):
    response = client.post("/api/booking", json={
        "functionName": "GetMultiplePatients",
        "parameters": {"LName": "Smith", "FName": "John"},
        "sessionId": "web_http",
    })

    assert response.status_code == 200
    assert response.json() == [{"PatNum": 5, "FName": "John", "LName": "Smith"}]

    debug = client.get("/api/debug/conversation-state", params={"sessionId": "web_http"})
    assert debug.status_code == 200
    assert debug.json()["state"]["identifiers"]["patientId"] == 5


def test_booking_validation_error_is_a_200_contract(client):
    response = client.post("/api/booking", json={
        "functionName": "GetMultiplePatients",
        "parameters": {"LName": "Smith"},
        "sessionId": "web_http",
    })

    body = response.json()
    assert response.status_code == 200
    assert body["validationError"] is True
    assert body["doNotProceed"] is True
    assert len(body["options"]) == 3


def test_booking_unknown_function(client):
    response = client.post("/api/booking", json={"functionName": "DoMagic", "sessionId": "web_http"})
    assert response.status_code == 404


def test_conversation_actions(client):
    processed = client.post("/api/conversation", json={
        "action": "process_message",
        "sessionId": "web_conv",
        "message": "Hi, my name is John Smith",
    })
    assert processed.status_code == 200
    assert processed.json()["extracted"]["patient.first_name"] == "John"

    fetched = client.post("/api/conversation", json={"action": "get", "sessionId": "web_conv"})
    assert fetched.json()["state"]["patient"]["lastName"] == "Smith"

    auto = client.post("/api/conversation", json={
        "action": "get_auto_params",
        "sessionId": "web_conv",
        "functionName": "CreatePatient",
    })
    assert auto.json()["autoFilledParams"] == {"FName": "John", "LName": "Smith"}


def test_conversation_request_errors(client):
    assert client.post("/api/conversation", json={"action": "get"}).status_code == 400
    assert client.post("/api/conversation", json={"action": "dance", "sessionId": "web_conv"}).status_code == 400
    assert client.post("/api/conversation", json={"action": "process_message", "sessionId": "web_conv"}).status_code == 400
    assert client.post("/api/conversation", json={"action": "get_auto_params", "sessionId": "web_conv"}).status_code == 400


def test_conversations_by_day(client):
    client.post("/api/conversation", json={"action": "process_message", "sessionId": "web_day", "message": "hello"})

    response = client.get("/api/conversations", params={"date": today_in_clinic_tz().isoformat()})
    assert response.status_code == 200
    assert [c["sessionId"] for c in response.json()["conversations"]] == ["web_day"]

    assert client.get("/api/conversations", params={"date": "12/01/2025"}).status_code == 400


def test_debug_state_requires_a_known_session(client):
    assert client.get("/api/debug/conversation-state").status_code == 400
    assert client.get("/api/debug/conversation-state", params={"sessionId": "web_nobody"}).status_code == 404


def test_module_has_no_server_launcher():
    import inspect

    import http_service
    import main

    source = inspect.getsource(http_service)
    assert "uvicorn" not in source
    assert "__main__" not in source
    assert main.app is http_service.app
