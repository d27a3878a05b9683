"""
Validator: applies a function's schema to resolved parameters.

An invalid result is a contract with the calling LLM, not a log line: it says
exactly which fields are missing or malformed, what shape was expected, and
that the user must be asked before the function is called again.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from config import logger
from exceptions import ValidationError
from models.schemas import FunctionSchema, FunctionSchemaRegistry, default_registry
from models.tool_args import is_empty_arg

ASK_USER = "ASK_USER"


@dataclass(frozen=True)
class InvalidField:
    field: str
    received: Any
    expected: str

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "received": self.received, "expected": self.expected}


@dataclass
class ValidationResult:
    function_name: str
    valid: bool
    params: Dict[str, Any]
    schema: Optional[FunctionSchema] = None
    missing_fields: List[str] = field(default_factory=list)
    invalid_fields: List[InvalidField] = field(default_factory=list)
    unsatisfied_groups: Tuple[Tuple[str, Tuple[str, ...], Mapping[str, Any]], ...] = ()

    @property
    def options(self) -> List[str]:
        return [f"{label}: {_format_example(example)}" for label, _, example in self.unsatisfied_groups]

    def fields_needing_values(self) -> List[str]:
        """
        Fields an extraction pass could fill: missing, malformed, and the
        fields of every alternative search shape when none was satisfied.
        Critical identifiers are excluded; only a handler result may set them.
        """
        wanted: List[str] = []
        for name in self.missing_fields:
            wanted.append(name)
        for bad in self.invalid_fields:
            wanted.append(bad.field)
        for _, group, _ in self.unsatisfied_groups:
            wanted.extend(group)
        critical = self.schema.critical_fields if self.schema else ()
        seen = set()
        result = []
        for name in wanted:
            if name in critical or name in seen:
                continue
            seen.add(name)
            result.append(name)
        return result

    def message(self) -> str:
        parts = []
        if self.missing_fields:
            parts.append(_missing_message(self.function_name, self.missing_fields, self.schema))
        if self.unsatisfied_groups:
            parts.append(
                f"{self.function_name} requires at least one complete search option. "
                f"Ask the user which one they can provide, then call again with one of: {'; '.join(self.options)}."
            )
        for bad in self.invalid_fields:
            parts.append(f'Invalid {bad.field}: "{bad.received}". Expected {bad.expected}.')
        if not self.missing_fields and not self.unsatisfied_groups and self.invalid_fields:
            parts.append(f"Ask the user to confirm these values before calling {self.function_name} again.")
        return " ".join(parts)

    def to_payload(self, extraction: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": True,
            "validationError": True,
            "functionName": self.function_name,
            "message": self.message(),
            "required": list(self.schema.required) if self.schema else [],
            "missingFields": list(self.missing_fields),
            "invalidFields": [bad.to_dict() for bad in self.invalid_fields],
            "example": copy.deepcopy(dict(self.schema.example)) if self.schema else {},
            "received": copy.deepcopy(self.params),
            "action": ASK_USER,
        }
        if self.unsatisfied_groups:
            payload["options"] = self.options
        if extraction is not None:
            payload["extractionAttempted"] = True
            payload["extraction"] = dict(extraction)
        return payload

    def to_error(self, extraction: Optional[Mapping[str, Any]] = None) -> ValidationError:
        return ValidationError(self.to_payload(extraction))


def _format_example(example: Mapping[str, Any]) -> str:
    inner = ", ".join(f'{k}: "{v}"' if isinstance(v, str) else f"{k}: {v}" for k, v in example.items())
    return "{ " + inner + " }"


def _missing_message(function_name: str, missing: List[str], schema: Optional[FunctionSchema]) -> str:
    labels = [schema.label(f) if schema else f for f in missing]
    spoken = labels[0] if len(labels) == 1 else f"{', '.join(labels[:-1])} and {labels[-1]}"
    if function_name == "CreatePatient":
        return (
            f"The user has NOT provided: {', '.join(labels)}. Ask the user: "
            f"\"I'll need your {spoken} to create your profile.\" "
            f"Do not call CreatePatient again until the user provides all of these."
        )
    if function_name == "CreateAppointment":
        return (
            f"Cannot book without: {', '.join(missing)}. You need a valid patient "
            f"(call GetMultiplePatients first) and an available slot (call GetAvailableSlots first) before booking."
        )
    return f"Missing: {', '.join(missing)}. Ask the user for this information before calling {function_name} again."


def validate_parameters(schema: Optional[FunctionSchema], function_name: str, params: Mapping[str, Any]) -> ValidationResult:
    """
    Required-field, disjunctive-group and domain-format checks. All three run
    so one response lists every problem; parameters are returned unchanged.
    """
    params = dict(params or {})
    if schema is None:
        return ValidationResult(function_name=function_name, valid=True, params=params)

    missing = [name for name in schema.required if is_empty_arg(params.get(name))]

    unsatisfied: Tuple = ()
    if schema.disjunctive_groups:
        satisfied = any(
            all(not is_empty_arg(params.get(name)) for name in group)
            for _, group, _ in schema.disjunctive_groups
        )
        if not satisfied:
            unsatisfied = schema.disjunctive_groups

    invalid = []
    for name, rule in schema.domain_rules.items():
        value = params.get(name)
        if is_empty_arg(value):
            continue
        expected = rule(value)
        if expected:
            invalid.append(InvalidField(field=name, received=value, expected=expected))

    result = ValidationResult(
        function_name=function_name,
        valid=not (missing or unsatisfied or invalid),
        params=params,
        schema=schema,
        missing_fields=missing,
        invalid_fields=invalid,
        unsatisfied_groups=unsatisfied,
    )
    if not result.valid:
        logger.info(
            f"[VALIDATOR] ❌ {function_name}: missing={missing} "
            f"invalid={[bad.field for bad in invalid]} no_search_option={bool(unsatisfied)}"
        )
    return result


class Validator:
    def __init__(self, registry: FunctionSchemaRegistry = default_registry):
        self.registry = registry

    def validate(self, function_name: str, params: Mapping[str, Any]) -> ValidationResult:
        return validate_parameters(self.registry.get(function_name), function_name, params)
