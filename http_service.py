"""
HTTP Service for the receptionist core.

Routes:
- POST /api/booking                        function-call pipeline (validate, fallback, handler, ledger)
- POST /api/conversation                   actions: get, process_message, get_auto_params
- GET  /api/conversations?date=YYYY-MM-DD  sessions started on a day (clinic timezone)
- GET  /api/debug/conversation-state       state summary for one session
- GET  /healthz                            health check

Booking handlers are registered on `handlers` (or passed to create_app) by
the deployment; this service only validates and assembles their parameters.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date
from json import JSONDecodeError
from typing import Any, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import logger
from services.conversation_service import ConversationService
from services.function_call_service import FunctionCallRequest, FunctionCallService
from services.llm_extraction_service import LLMExtractionFallback
from services.session_store import InMemorySessionStore, SessionStore
from tools.handler_registry import HandlerRegistry
from utils.call_logger import CallLogger
from utils.contact_utils import parse_iso_date, today_in_clinic_tz


class ConversationRequest(BaseModel):
    action: str
    sessionId: Optional[str] = None
    message: Optional[Any] = None
    role: Optional[str] = "user"
    functionName: Optional[str] = None


def create_app(
    store: Optional[SessionStore] = None,
    handlers: Optional[HandlerRegistry] = None,
    fallback: Optional[LLMExtractionFallback] = None,
    call_logger: Optional[CallLogger] = None,
) -> FastAPI:
    store = store or InMemorySessionStore()
    handlers = handlers if handlers is not None else HandlerRegistry()
    call_logger = call_logger or CallLogger()
    pipeline = FunctionCallService(store, handlers, fallback=fallback, call_logger=call_logger)
    conversations = ConversationService(store)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        # Push any ledger rows still buffered before the process exits
        await call_logger.flush_to_supabase()
        logger.info("[SHUTDOWN] Ledger buffer flushed")

    # No docs endpoint (reduces attack surface)
    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.store = store
    app.state.handlers = handlers
    app.state.pipeline = pipeline
    app.state.call_logger = call_logger

    @app.get("/healthz")
    def health_check():
        return {"status": "ok", "service": "receptionist-core"}

    @app.post("/api/booking")
    async def booking(request: Request):
        try:
            body = await request.json()
        except JSONDecodeError:
            return JSONResponse({"error": True, "message": "Request body must be JSON"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": True, "message": "Request body must be a JSON object"}, status_code=400)

        call = FunctionCallRequest.from_body(body)
        logger.info(f"[BOOKING API] {call.function_name} (session={call.session_id or '-'})")
        outcome = await pipeline.handle(call)
        return JSONResponse(outcome.body, status_code=outcome.status_code)

    @app.post("/api/conversation")
    async def conversation(req: ConversationRequest):
        if not req.sessionId:
            return JSONResponse({"error": True, "message": "sessionId is required"}, status_code=400)

        if req.action == "get":
            return await conversations.get(req.sessionId)
        if req.action == "process_message":
            if req.message is None:
                return JSONResponse({"error": True, "message": "message is required"}, status_code=400)
            return await conversations.process_message(req.sessionId, req.message, req.role)
        if req.action == "get_auto_params":
            if not req.functionName:
                return JSONResponse({"error": True, "message": "functionName is required"}, status_code=400)
            return await conversations.get_auto_params(req.sessionId, req.functionName)
        return JSONResponse({"error": True, "message": f"Unknown action: {req.action}"}, status_code=400)

    @app.get("/api/conversations")
    async def list_conversations(day: Optional[str] = Query(None, alias="date")):
        target: Optional[date] = parse_iso_date(day) if day else today_in_clinic_tz()
        if target is None:
            return JSONResponse({"error": True, "message": "date must be YYYY-MM-DD"}, status_code=400)
        items = await conversations.list_for_day(target)
        return {"success": True, "date": target.isoformat(), "count": len(items), "conversations": items}

    @app.get("/api/debug/conversation-state")
    async def debug_state(session_id: Optional[str] = Query(None, alias="sessionId")):
        if not session_id:
            return JSONResponse({"error": True, "message": "sessionId is required"}, status_code=400)
        state = await store.peek(session_id)
        if state is None:
            return JSONResponse({"error": True, "message": f"No conversation state for {session_id}"}, status_code=404)
        return {
            "sessionId": session_id,
            "summary": state.summary(),
            "slots": state.slot_summary(),
            "missingRequired": state.missing_required(),
            "state": state.export(),
        }

    return app


handlers = HandlerRegistry()
app = create_app(handlers=handlers)
