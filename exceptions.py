"""
Error taxonomy for the function-call pipeline.

ValidationError and HandlerError are meant for the calling LLM (different
retry semantics); ExtractionError never leaves the fallback; InternalSystemError
is surfaced as a generic failure.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ReceptionistError(Exception):
    """Base class for errors raised by the receptionist core."""

    category = "system"


class ValidationError(ReceptionistError):
    """Parameters are missing, no alternative search shape matched, or a value is malformed."""

    category = "validation"

    def __init__(self, payload: Dict[str, Any]):
        self.payload = payload
        super().__init__(payload.get("message") or "Validation failed")

    def to_response(self) -> Dict[str, Any]:
        return dict(self.payload)


class ExtractionError(ReceptionistError):
    """The LLM extraction call failed, timed out, or returned unusable output."""

    category = "extraction"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class HandlerError(ReceptionistError):
    """The downstream booking operation failed for a valid request."""

    category = "handler"

    def __init__(self, function_name: str, message: str, status_code: Optional[int] = None):
        self.function_name = function_name
        self.message = message or f"Error executing {function_name}"
        self.status_code = status_code
        super().__init__(self.message)

    def to_response(self) -> Dict[str, Any]:
        return {
            "error": True,
            "handlerError": True,
            "functionName": self.function_name,
            "message": self.message,
            "action": "REPORT_FAILURE",
        }


class InternalSystemError(ReceptionistError):
    """Unexpected failure inside the core (store unavailable, programming error)."""

    category = "system"

    def __init__(self, function_name: Optional[str], detail: str):
        self.function_name = function_name
        self.detail = detail
        super().__init__(detail)

    def to_response(self) -> Dict[str, Any]:
        target = self.function_name or "request"
        return {
            "error": True,
            "systemError": True,
            "message": f"Internal error while processing {target}",
        }


class UnknownFunctionError(ReceptionistError):
    """No domain handler is registered under the requested name."""

    category = "unknown_function"

    def __init__(self, function_name: str, available: List[str]):
        self.function_name = function_name
        self.available = available
        super().__init__(f"Unknown function: {function_name}")

    def to_response(self) -> Dict[str, Any]:
        return {
            "error": True,
            "message": f"Unknown function: {self.function_name}",
            "availableFunctions": self.available,
        }
