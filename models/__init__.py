"""
Data models for the receptionist core.
"""

from .state import (
    Channel,
    MessageRole,
    Intent,
    ConversationStage,
    SlotSource,
    STAGE_TRANSITIONS,
    SLOT_PATHS,
    CRITICAL_SLOT_PATHS,
    ConversationMessage,
    OverrideEvent,
    CallRecord,
    MergeReport,
    ConversationState,
    detect_channel,
    has_correction_intent,
)
from .schemas import (
    FunctionSchema,
    FunctionSchemaRegistry,
    SlotBinding,
    default_registry,
    get_schema,
)
from .tool_args import (
    FunctionArgs,
    FUNCTION_ARG_MODELS,
    is_empty_arg,
    _sanitize_tool_arg,
)

__all__ = [
    "Channel",
    "MessageRole",
    "Intent",
    "ConversationStage",
    "SlotSource",
    "STAGE_TRANSITIONS",
    "SLOT_PATHS",
    "CRITICAL_SLOT_PATHS",
    "ConversationMessage",
    "OverrideEvent",
    "CallRecord",
    "MergeReport",
    "ConversationState",
    "detect_channel",
    "has_correction_intent",
    "FunctionSchema",
    "FunctionSchemaRegistry",
    "SlotBinding",
    "default_registry",
    "get_schema",
    "FunctionArgs",
    "FUNCTION_ARG_MODELS",
    "is_empty_arg",
    "_sanitize_tool_arg",
]
