"""
Message ingestion: appends turns to the session and runs the deterministic
extractor over user turns.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional

from config import logger
from models.schemas import FunctionSchemaRegistry, default_registry
from models.state import ConversationState, MessageRole, SlotSource, has_correction_intent
from services.extraction_service import extract as extract_facts
from services.parameter_resolver import resolve_parameters
from services.session_store import SessionStore


def message_text(content: Any) -> str:
    """Message content may be a string or a list of {text|content} parts."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict):
                parts.append(str(part.get("text") or part.get("content") or ""))
        return " ".join(p for p in parts if p)
    return ""


def _role(value: Any) -> MessageRole:
    try:
        return MessageRole(str(value or "assistant").lower())
    except ValueError:
        return MessageRole.ASSISTANT


def ingest_message(
    state: ConversationState,
    role: MessageRole,
    content: str,
    reference_date: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Append one message; for user turns, extract facts and merge them with the
    message index as their origin. Correction wording lets the turn replace
    earlier values. Returns the extracted facts.
    """
    index = state.add_message(role, content)
    if role is not MessageRole.USER:
        return {}

    found = extract_facts(content, reference_date)
    if found:
        correction = has_correction_intent(content)
        report = state.merge(found, SlotSource.DETERMINISTIC, origin=index, correction=correction)
        if report.skipped:
            logger.debug(f"[SESSION] Kept earlier values for {sorted(report.skipped)} in {state.session_id}")
        state.refresh_stage(reason="user turn")
    return found


def sync_history(
    state: ConversationState,
    history: Iterable[Mapping[str, Any]],
    reference_date: Optional[date] = None,
) -> int:
    """
    Append only the history entries past the session's history cursor.
    Returns the number of messages added.
    """
    entries = list(history or [])
    added = 0
    for msg in entries[state.history_cursor:]:
        if not isinstance(msg, Mapping):
            continue
        text = message_text(msg.get("content")).strip()
        if not text:
            continue
        ingest_message(state, _role(msg.get("role")), text, reference_date)
        added += 1
    state.history_cursor = max(state.history_cursor, len(entries))
    if added:
        logger.info(f"[SESSION] Synced {added} new messages for {state.session_id}: {state.slot_summary()}")
    return added


def auto_params(
    state: ConversationState,
    function_name: str,
    registry: FunctionSchemaRegistry = default_registry,
) -> Dict[str, Any]:
    """Parameters the session could fill for function_name right now."""
    return resolve_parameters(registry.get(function_name), function_name, {}, state).auto_filled


class ConversationService:
    """Session-level operations behind the conversation API."""

    def __init__(self, store: SessionStore, registry: FunctionSchemaRegistry = default_registry):
        self.store = store
        self.registry = registry

    async def process_message(self, session_id: str, content: Any, role: Any = "user") -> Dict[str, Any]:
        async with self.store.session(session_id) as state:
            text = message_text(content).strip()
            extracted = ingest_message(state, _role(role), text) if text else {}
            return {
                "success": True,
                "extracted": extracted,
                "state": state.export(),
            }

    async def get(self, session_id: str) -> Dict[str, Any]:
        async with self.store.session(session_id) as state:
            return {"success": True, "state": state.export(), "summary": state.summary()}

    async def get_auto_params(self, session_id: str, function_name: str) -> Dict[str, Any]:
        async with self.store.session(session_id) as state:
            return {
                "success": True,
                "functionName": function_name,
                "autoFilledParams": auto_params(state, function_name, self.registry),
            }

    async def list_for_day(self, day: date) -> List[Dict[str, Any]]:
        states = await self.store.list_by_date(day)
        return [s.export() for s in states]
