"""
Service modules package.

This package contains the function-call pipeline services:
- Deterministic extraction and message ingestion
- Session store with per-session locking
- Parameter resolution and validation
- LLM extraction fallback
- Call ledger
"""

from .session_store import SessionStore, InMemorySessionStore
from .extraction_service import extract
from .parameter_resolver import ParameterResolver, ResolvedParams, resolve_parameters
from .validation_service import Validator, ValidationResult, validate_parameters
from .llm_extraction_service import LLMExtractionFallback, ExtractionResult
from .call_ledger import CallLedger
from .conversation_service import ConversationService, ingest_message, sync_history
from .function_call_service import FunctionCallService, FunctionCallRequest, FunctionCallOutcome

__all__ = [
    "SessionStore",
    "InMemorySessionStore",
    "extract",
    "ParameterResolver",
    "ResolvedParams",
    "resolve_parameters",
    "Validator",
    "ValidationResult",
    "validate_parameters",
    "LLMExtractionFallback",
    "ExtractionResult",
    "CallLedger",
    "ConversationService",
    "ingest_message",
    "sync_history",
    "FunctionCallService",
    "FunctionCallRequest",
    "FunctionCallOutcome",
]
