"""
Function-call pipeline.

ingest history -> resolve -> validate -> (extraction fallback, once) ->
re-resolve + re-validate -> handler -> ledger

The whole request runs under the session's lock, so two deliveries for the
same session never interleave. Every outcome is written to the ledger before
the response is built.
"""

from __future__ import annotations

import asyncio
import json
import traceback
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from config import logger
from exceptions import HandlerError, InternalSystemError, UnknownFunctionError
from models.schemas import FunctionSchemaRegistry, default_registry
from models.state import ConversationState
from services.call_ledger import CallLedger, HANDLER, SUCCESS, SYSTEM, UNKNOWN_FUNCTION, VALIDATION
from services.conversation_service import sync_history
from services.llm_extraction_service import ExtractionResult, LLMExtractionFallback
from services.parameter_resolver import ParameterResolver, ResolvedParams
from services.session_store import SessionStore
from services.validation_service import Validator
from tools.handler_registry import HandlerRegistry
from utils.call_logger import CallLogger

NEXT_ACTION = (
    "You MUST ask the user to provide the missing information. "
    "Do NOT call any other functions until you have collected this data from the user."
)


@dataclass
class FunctionCallRequest:
    function_name: Optional[str]
    parameters: Dict[str, Any] = field(default_factory=dict)
    session_id: Optional[str] = None
    conversation_history: Optional[List[Dict[str, Any]]] = None

    @classmethod
    def from_body(cls, body: Mapping[str, Any]) -> "FunctionCallRequest":
        params = body.get("parameters")
        if params is None:
            params = body.get("arguments")
        if isinstance(params, str):
            # Some tool webhooks send arguments as a JSON string
            try:
                params = json.loads(params) if params.strip() else {}
            except json.JSONDecodeError:
                logger.warning("[BOOKING API] Unparseable string parameters; treating as empty")
                params = {}
        if not isinstance(params, dict):
            params = {}
        history = body.get("conversationHistory")
        return cls(
            function_name=body.get("functionName") or None,
            parameters=params,
            session_id=body.get("sessionId") or None,
            conversation_history=history if isinstance(history, list) else None,
        )


@dataclass
class FunctionCallOutcome:
    category: str
    status_code: int
    body: Any
    resolved: Optional[ResolvedParams] = None
    extraction: Optional[ExtractionResult] = None


class FunctionCallService:
    def __init__(
        self,
        store: SessionStore,
        handlers: HandlerRegistry,
        registry: FunctionSchemaRegistry = default_registry,
        fallback: Optional[LLMExtractionFallback] = None,
        call_logger: Optional[CallLogger] = None,
    ):
        self.store = store
        self.handlers = handlers
        self.registry = registry
        self.call_logger = call_logger or CallLogger()
        self.resolver = ParameterResolver(store, registry)
        self.validator = Validator(registry)
        self.fallback = fallback or LLMExtractionFallback(call_logger=self.call_logger)
        self.ledger = CallLedger(registry, self.call_logger)

    async def handle(self, request: FunctionCallRequest) -> FunctionCallOutcome:
        if not request.function_name:
            logger.error("[BOOKING API] Missing functionName")
            return FunctionCallOutcome("bad_request", 400, {"error": True, "message": "functionName is required"})

        if request.session_id:
            async with self.store.session(request.session_id) as state:
                return await self._run(request, state)
        return await self._run(request, None)

    async def _run(self, request: FunctionCallRequest, state: Optional[ConversationState]) -> FunctionCallOutcome:
        fn = request.function_name
        sid = request.session_id
        resolved: Optional[ResolvedParams] = None
        extraction: Optional[ExtractionResult] = None

        def _record(category: str, **kwargs):
            params = resolved.params if resolved else request.parameters
            auto = resolved.auto_filled if resolved else {}
            return self.ledger.record(state, sid, fn, params, auto, category, **kwargs)

        try:
            if state is not None and request.conversation_history:
                sync_history(state, request.conversation_history)

            if fn not in self.handlers:
                error = UnknownFunctionError(fn, self.handlers.names())
                logger.error(f"[BOOKING API] Unknown function: {fn}")
                _record(UNKNOWN_FUNCTION, error_message=str(error))
                return FunctionCallOutcome(UNKNOWN_FUNCTION, 404, error.to_response())

            resolved = self.resolver.resolve_for_state(state, fn, request.parameters)
            for event in resolved.overrides:
                self.call_logger.log_override(sid, event)
            validation = self.validator.validate(fn, resolved.params)

            if not validation.valid and validation.schema is not None and self.fallback.should_run(state):
                logger.info(f"[BOOKING API] Validation failed for {fn}, trying LLM extraction fallback...")
                extraction = await self.fallback.extract(state, validation.schema, validation.fields_needing_values())
                if extraction.filled:
                    retry_params = {**request.parameters, **extraction.filled}
                    resolved = self.resolver.resolve_for_state(state, fn, retry_params)
                    for event in resolved.overrides:
                        self.call_logger.log_override(sid, event)
                    validation = self.validator.validate(fn, resolved.params)
                    extraction.revalidated = True
                    extraction.revalidation_passed = validation.valid
                    if validation.valid:
                        logger.info(f"[BOOKING API] ✓ LLM extraction fixed the parameters for {fn}")

            extraction_info = extraction.to_dict() if extraction is not None else None

            if not validation.valid:
                payload = validation.to_payload(extraction_info)
                payload["llmExtractionAttempted"] = bool(extraction and extraction.attempted)
                payload["nextAction"] = NEXT_ACTION
                payload["doNotProceed"] = True
                _record(VALIDATION, error_message=payload["message"], extraction=extraction_info)
                self.call_logger.log_validation_failure(sid, fn, payload)
                return FunctionCallOutcome(VALIDATION, 200, payload, resolved, extraction)

            try:
                result = await self.handlers.invoke(fn, validation.params)
            except Exception as e:
                error = e if isinstance(e, HandlerError) else HandlerError(fn, str(e))
                logger.error(f"[BOOKING API] Error executing {fn}: {error.message}")
                _record(HANDLER, error_message=error.message, extraction=extraction_info)
                return FunctionCallOutcome(HANDLER, 200, error.to_response(), resolved, extraction)

            _record(SUCCESS, result=result, extraction=extraction_info)
            return FunctionCallOutcome(SUCCESS, 200, result, resolved, extraction)

        except InternalSystemError as e:
            return self._system_failure(e, _record, resolved, extraction, sid)
        except Exception as e:
            return self._system_failure(InternalSystemError(fn, str(e)), _record, resolved, extraction, sid)
        except asyncio.CancelledError:
            # Parent request aborted: leave a trace, then let the cancellation propagate
            _record(SYSTEM, error_message="request cancelled")
            raise

    def _system_failure(self, error: InternalSystemError, record, resolved, extraction, session_id) -> FunctionCallOutcome:
        logger.error(f"[BOOKING API] Internal error for {error.function_name}: {error.detail}")
        self.call_logger.log_error("function_call", error.detail, recovered=True,
                                   session_id=session_id, stack_trace=traceback.format_exc())
        record(SYSTEM, error_message=error.detail)
        return FunctionCallOutcome(SYSTEM, 500, error.to_response(), resolved, extraction)
