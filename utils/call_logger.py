"""
CallLogger - Structured logging & durable hand-off for the function-call pipeline.

Dual-destination strategy:
- stdout: one structured JSON line per event, for real-time debugging
- Supabase (Postgres): ledger records batch-inserted into the function_calls
  table, for operator dashboards and audits

Key Features:
- All events correlated by session_id
- Non-blocking batched Supabase inserts (asyncio.to_thread)
- Sensitive data sanitization (secrets redacted, phone numbers masked)
- Persistence failures are logged, never raised into a request

Usage:
    from utils.call_logger import CallLogger

    call_logger = CallLogger(environment="production")
    call_logger.log_function_call(session_id, record)
    await call_logger.flush_to_supabase()
"""

from __future__ import annotations

import re
import json
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from config import (
    ENVIRONMENT,
    FUNCTION_CALLS_TABLE,
    LOG_BUFFER_SIZE,
    SUPABASE_LOGGING_ENABLED,
    get_supabase_client,
)


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# STRUCTURED JSON LOGGER
# =============================================================================

class StructuredLogger:
    """
    Structured JSON logger.
    All entries include session_id, environment, timestamp.
    """

    def __init__(self, name: str = "receptionist_core.events"):
        self._logger = logging.getLogger(name)
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False

        # Avoid duplicate handlers
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(handler)

    def log(
        self,
        level: str,
        message: str,
        session_id: Optional[str] = None,
        environment: Optional[str] = None,
        **extra
    ):
        """Emit a structured JSON log entry."""
        log_entry = {
            "timestamp": _utc_stamp(),
            "severity": level.upper(),
            "message": message,
            "session_id": session_id,
            "environment": environment or ENVIRONMENT,
        }

        for key, value in extra.items():
            if value is not None:
                log_entry[key] = value

        log_entry = {k: v for k, v in log_entry.items() if v is not None}
        log_line = json.dumps(log_entry, default=str)

        if level.upper() == "ERROR":
            self._logger.error(log_line)
        elif level.upper() == "WARNING":
            self._logger.warning(log_line)
        elif level.upper() == "DEBUG":
            self._logger.debug(log_line)
        else:
            self._logger.info(log_line)


_structured_logger = StructuredLogger()


# =============================================================================
# SANITIZATION
# =============================================================================

def mask_phone(phone: Optional[str]) -> str:
    """
    Mask phone number for safe logging.
    Example: 6195551234 -> ***1234
    """
    if not phone:
        return "unknown"

    digits = re.sub(r"\D", "", str(phone))

    if len(digits) >= 4:
        return f"***{digits[-4:]}"
    return "***"


_SENSITIVE_KEYS = {
    "api_key", "apikey", "secret", "password", "token",
    "authorization", "credential",
}


def sanitize_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Remove or mask sensitive data from payload before logging or persisting.
    Works on nested dicts and lists of dicts (parameters, handler results).
    """
    sanitized = {}
    for key, value in payload.items():
        key_lower = str(key).lower()

        if any(s in key_lower for s in _SENSITIVE_KEYS):
            sanitized[key] = "[REDACTED]"
        elif "phone" in key_lower and isinstance(value, (str, int)):
            sanitized[key] = mask_phone(str(value))
        elif isinstance(value, dict):
            sanitized[key] = sanitize_payload(value)
        elif isinstance(value, list):
            sanitized[key] = [sanitize_payload(v) if isinstance(v, dict) else v for v in value]
        else:
            sanitized[key] = value

    return sanitized


# =============================================================================
# CALL LOGGER
# =============================================================================

class CallLogger:
    """
    Process-wide sink for the Call Ledger.

    Every ledger record, override event, validation failure and extraction
    attempt is emitted as a JSON line; ledger records are additionally
    buffered for batch insert into Supabase when credentials are configured.
    """

    def __init__(
        self,
        environment: str = ENVIRONMENT,
        supabase_client: Optional[Any] = None,
        persist: bool = SUPABASE_LOGGING_ENABLED,
        max_buffer_size: int = LOG_BUFFER_SIZE,
    ):
        self.environment = environment
        self.persist = persist
        self.max_buffer_size = max_buffer_size

        self._record_buffer: List[Dict[str, Any]] = []
        self._buffer_lock = asyncio.Lock()
        self._pending: set = set()

        # Supabase client (lazy-loaded if not provided)
        self._supabase = supabase_client

    def _log_to_stdout(self, event_type: str, session_id: Optional[str], payload: Dict[str, Any], level: str = "INFO"):
        clean = sanitize_payload(payload)
        _structured_logger.log(
            level=level,
            message=f"[{event_type.upper()}] {json.dumps(clean, default=str)}",
            session_id=session_id,
            environment=self.environment,
            type=event_type,
        )

    def _buffer_record(self, row: Dict[str, Any]):
        if not self.persist:
            return
        self._record_buffer.append(row)

        if len(self._record_buffer) >= self.max_buffer_size:
            try:
                task = asyncio.get_running_loop().create_task(self._async_flush_records())
            except RuntimeError:
                # No running loop (sync caller); the next explicit flush picks the rows up
                return
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _async_flush_records(self):
        """Flush buffered ledger rows to Supabase (off the event loop)."""
        if not self._record_buffer or not self.persist:
            return

        async with self._buffer_lock:
            rows = self._record_buffer.copy()
            self._record_buffer.clear()

        if not rows:
            return

        client = self._supabase or get_supabase_client()
        if client is None:
            _structured_logger.log(
                level="DEBUG",
                message=f"Supabase not configured; dropping {len(rows)} ledger rows after stdout logging",
                environment=self.environment,
            )
            return
        self._supabase = client

        try:
            await asyncio.to_thread(
                lambda: client.table(FUNCTION_CALLS_TABLE).insert(rows).execute()
            )
        except Exception as e:
            # The records were already logged to stdout; a storage outage must not fail the turn
            _structured_logger.log(
                level="ERROR",
                message=f"Failed to flush ledger records to Supabase: {e}",
                environment=self.environment,
                error=str(e),
                record_count=len(rows),
            )

    @property
    def buffered(self) -> int:
        return len(self._record_buffer)

    # =========================================================================
    # LEDGER LOGS
    # =========================================================================

    def log_function_call(self, session_id: Optional[str], record) -> None:
        """Log one Call Ledger record and queue it for durable hand-off."""
        entry = record.to_dict()
        payload = {
            "function_name": record.function_name,
            "category": record.category,
            "parameters": entry["parameters"],
            "auto_filled_params": entry["autoFilledParams"],
            "error": record.error_message,
        }
        if record.extraction:
            payload["extraction"] = entry["extraction"]
        level = "INFO" if record.succeeded else "WARNING"
        self._log_to_stdout("function_call", session_id, payload, level=level)

        result_text = json.dumps(entry["result"], default=str) if record.result is not None else None
        self._buffer_record(sanitize_payload({
            "session_id": session_id,
            "function_name": record.function_name,
            "parameters": entry["parameters"],
            "auto_filled_params": entry["autoFilledParams"],
            "category": record.category,
            "result": result_text[:2000] if result_text else None,
            "error_message": record.error_message,
            "created_at": entry["timestamp"],
        }))

    def log_override(self, session_id: Optional[str], event) -> None:
        self._log_to_stdout("override", session_id, event.to_dict(), level="WARNING")

    def log_validation_failure(self, session_id: Optional[str], function_name: str, payload: Dict[str, Any]) -> None:
        self._log_to_stdout("validation_failure", session_id, {
            "function_name": function_name,
            "missing_fields": payload.get("missingFields"),
            "invalid_fields": [f.get("field") for f in payload.get("invalidFields", [])],
            "extraction_attempted": payload.get("extractionAttempted", False),
        })

    def log_extraction(
        self,
        session_id: Optional[str],
        function_name: str,
        requested: List[str],
        filled: Dict[str, Any],
        success: bool,
        latency_ms: int,
        error: Optional[str] = None,
    ) -> None:
        self._log_to_stdout("extraction", session_id, {
            "function_name": function_name,
            "requested": requested,
            "filled": filled,
            "success": success,
            "latency_ms": latency_ms,
            "error": error,
        }, level="INFO" if success else "WARNING")

    # =========================================================================
    # ERROR LOGS
    # =========================================================================

    def log_error(
        self,
        component: str,
        error: str,
        recovered: bool,
        session_id: Optional[str] = None,
        stack_trace: Optional[str] = None,
    ):
        """Log error event with optional stack trace."""
        payload = {
            "component": component,
            "error": error,
            "recovered": recovered,
        }

        if stack_trace:
            payload["stack_trace"] = stack_trace[:2000] if len(stack_trace) > 2000 else stack_trace

        _structured_logger.log(
            level="ERROR",
            message=f"[ERROR] {component}: {error}",
            session_id=session_id,
            environment=self.environment,
            **payload
        )

    # =========================================================================
    # FLUSH TO SUPABASE
    # =========================================================================

    async def flush_to_supabase(self):
        """
        Flush all buffered ledger rows to Supabase.
        Call this on shutdown so nothing queued is lost.
        """
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        await self._async_flush_records()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.flush_to_supabase()
