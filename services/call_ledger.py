"""
Call ledger: append-only record of every function-call attempt.

The ledger is the only writer allowed to promote identifiers from a
successful handler result into the session (SlotSource.HANDLER).
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from config import logger
from models.schemas import FunctionSchemaRegistry, default_registry
from models.state import CallRecord, ConversationStage, ConversationState, SlotSource
from utils.call_logger import CallLogger

SUCCESS = "success"
VALIDATION = "validation"
HANDLER = "handler"
SYSTEM = "system"
UNKNOWN_FUNCTION = "unknown_function"


class CallLedger:
    def __init__(
        self,
        registry: FunctionSchemaRegistry = default_registry,
        call_logger: Optional[CallLogger] = None,
    ):
        self.registry = registry
        self.call_logger = call_logger or CallLogger()

    def record(
        self,
        state: Optional[ConversationState],
        session_id: Optional[str],
        function_name: str,
        resolved_params: Mapping[str, Any],
        auto_filled: Mapping[str, Any],
        category: str,
        result: Any = None,
        error_message: Optional[str] = None,
        extraction: Optional[Dict[str, Any]] = None,
    ) -> CallRecord:
        """
        Append one immutable record. `state` must be held under the session
        lock by the caller; sessionless calls are only logged.
        """
        record = CallRecord.create(
            function_name=function_name,
            resolved_parameters=dict(resolved_params or {}),
            auto_filled_fields=dict(auto_filled or {}),
            category=category,
            result=result,
            error_message=error_message,
            extraction=extraction,
        )
        if state is not None:
            state.append_call_record(record)
            if record.succeeded:
                self._apply_result(state, record)
            logger.info(
                f"[LEDGER] 📝 {session_id}: {function_name} -> {category} "
                f"(call #{len(state.call_log)}, auto-filled={sorted(record.auto_filled_fields)})"
            )
        self.call_logger.log_function_call(session_id, record)
        return record

    def _apply_result(self, state: ConversationState, record: CallRecord) -> None:
        schema = self.registry.get(record.function_name)
        if schema is None:
            return

        for promote in schema.promotions:
            partial = promote(record.result)
            if not partial:
                continue
            report = state.merge(partial, SlotSource.HANDLER, function_name=record.function_name)
            if report.applied:
                logger.info(f"[LEDGER] 🔑 Promoted from {record.function_name}: {report.applied}")

        status = record.resolved_parameters.get("AptStatus") or "Scheduled"
        if schema.completes_booking and status == "Scheduled":
            state.advance_stage(ConversationStage.BOOKED, reason=f"{record.function_name} succeeded")
        else:
            state.refresh_stage(reason=f"{record.function_name} succeeded")
