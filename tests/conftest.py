import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from models.state import ConversationState, SlotSource
from services.llm_extraction_service import LLMExtractionFallback
from services.session_store import InMemorySessionStore
from utils.call_logger import CallLogger


def completion(content):
    """Shape of an openai chat completion, as far as the fallback reads it."""
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def fake_llm_client(payload=None, raw=None, delay=0.0, error=None):
    """AsyncMock double for AsyncOpenAI exposing chat.completions.create."""
    content = raw if raw is not None else json.dumps(payload or {})

    async def _create(**kwargs):
        if delay:
            await asyncio.sleep(delay)
        if error is not None:
            raise error
        return completion(content)

    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=_create)
    return client


@pytest.fixture
def call_logger():
    return CallLogger(environment="test", persist=False)


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def state():
    return ConversationState.new("web_test_session")


@pytest.fixture
def known_patient_state(state):
    """A session where a prior CreatePatient call returned PatNum 7."""
    state.merge({"identifiers.patient_id": 7}, SlotSource.HANDLER, function_name="CreatePatient")
    return state


@pytest.fixture
def make_fallback(call_logger):
    def _make(**client_kwargs):
        return LLMExtractionFallback(
            client=fake_llm_client(**client_kwargs),
            timeout_sec=0.2,
            enabled=True,
            call_logger=call_logger,
        )
    return _make
