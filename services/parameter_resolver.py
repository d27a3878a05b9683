"""
Parameter resolver: merges caller-supplied parameters with what the session
already knows, under the critical-identifier precedence rule.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from config import logger
from models.schemas import FunctionSchema, FunctionSchemaRegistry, default_registry
from models.state import ConversationState, OverrideEvent, SlotSource, _same_value
from models.tool_args import _sanitize_tool_arg
from services.session_store import SessionStore


@dataclass(frozen=True)
class ResolvedParams:
    function_name: str
    params: Dict[str, Any]
    auto_filled: Dict[str, Any] = field(default_factory=dict)
    defaults_applied: Tuple[str, ...] = ()
    overrides: Tuple[OverrideEvent, ...] = ()
    has_schema: bool = True


def resolve_parameters(
    schema: Optional[FunctionSchema],
    function_name: str,
    caller_params: Optional[Mapping[str, Any]],
    state: Optional[ConversationState],
) -> ResolvedParams:
    """
    Pure resolution step; the state is only read.

    For each declared field: a critical identifier held by the session wins
    over whatever the caller sent (the discarded value comes back as an
    override event); otherwise a field the caller left empty is filled from
    its bound session slot. Schema defaults fill whatever is still empty.
    """
    params: Dict[str, Any] = dict(caller_params or {})
    if schema is None:
        return ResolvedParams(function_name=function_name, params=params, has_schema=False)

    auto_filled: Dict[str, Any] = {}
    overrides = []

    for name in schema.fields:
        supplied = _sanitize_tool_arg(params.get(name))
        binding = schema.slot_bindings.get(name)
        if binding is None or state is None:
            continue
        known = _sanitize_tool_arg(binding.read(state))

        if schema.is_critical(name) and known is not None:
            if supplied is not None and not _same_value(supplied, known):
                overrides.append(OverrideEvent(
                    field=binding.paths[0],
                    kept=known,
                    discarded=supplied,
                    source=SlotSource.CALLER,
                    reason="authoritative_value_kept",
                    function_name=function_name,
                ))
                params[name] = known
                auto_filled[name] = known
            elif supplied is None and binding.autofill:
                params[name] = known
                auto_filled[name] = known
            continue

        if supplied is None and known is not None and binding.autofill:
            params[name] = known
            auto_filled[name] = known

    defaults_applied = []
    for name, default in schema.defaults.items():
        if _sanitize_tool_arg(params.get(name)) is None:
            params[name] = default
            defaults_applied.append(name)

    return ResolvedParams(
        function_name=function_name,
        params=params,
        auto_filled=auto_filled,
        defaults_applied=tuple(defaults_applied),
        overrides=tuple(overrides),
    )


class ParameterResolver:
    """Session-aware wrapper around resolve_parameters that records override events."""

    def __init__(self, store: SessionStore, registry: FunctionSchemaRegistry = default_registry):
        self.store = store
        self.registry = registry

    def resolve_for_state(
        self,
        state: Optional[ConversationState],
        function_name: str,
        caller_params: Optional[Mapping[str, Any]],
    ) -> ResolvedParams:
        """Resolve against a state the caller already holds the session lock for."""
        resolved = resolve_parameters(self.registry.get(function_name), function_name, caller_params, state)
        if state is not None:
            for event in resolved.overrides:
                state.record_override(event)
        if resolved.auto_filled:
            logger.info(f"[RESOLVER] 🔄 {function_name}: auto-filled {sorted(resolved.auto_filled)}")
        return resolved

    async def resolve(
        self,
        session_id: Optional[str],
        function_name: str,
        caller_params: Optional[Mapping[str, Any]],
    ) -> ResolvedParams:
        if not session_id:
            return self.resolve_for_state(None, function_name, caller_params)
        async with self.store.session(session_id) as state:
            return self.resolve_for_state(state, function_name, caller_params)
