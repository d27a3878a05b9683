"""
LLM extraction fallback.

One bounded structured-output call that asks a language model for exactly the
fields validation reported as missing or malformed. Its output is untrusted:
values are normalized, critical identifiers are never requested or accepted,
and everything goes through the regular merge policy and re-validation.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from openai import OpenAIError
from pydantic import ConfigDict, ValidationError as PydanticValidationError, create_model

from config import (
    EXTRACTION_MAX_TOKENS,
    EXTRACTION_MODEL,
    EXTRACTION_TIMEOUT_SEC,
    EXTRACTION_TRANSCRIPT_WINDOW,
    LLM_FALLBACK_ENABLED,
    get_openai_client,
    logger,
)
from exceptions import ExtractionError
from models.schemas import FunctionSchema, coerce_id, _compose_apt_datetime
from models.state import ConversationState, SlotSource
from models.tool_args import _sanitize_tool_arg
from prompts.extraction_prompt import EXTRACTION_SYSTEM_PROMPT, build_extraction_prompt
from utils.contact_utils import (
    normalize_date_value,
    normalize_email,
    parse_apt_datetime,
    parse_clock_time,
    today_in_clinic_tz,
    validate_email_address,
)
from utils.phone_utils import normalize_phone_digits

PHONE_FIELDS = {"Phone", "WirelessPhone"}
DATE_FIELDS = {"Birthdate", "DateStart", "DateEnd", "dateStart", "dateEnd", "ScheduleDate"}
ID_FIELDS = {"ProvNum", "Op", "OpNum", "ScheduleNum", "lengthMinutes", "ExcludeScheduleNum"}
CLOCK_FIELDS = {"StartTime", "EndTime"}
NAME_FIELDS = {"FName", "LName"}


@dataclass
class ExtractionResult:
    function_name: str
    attempted: bool
    requested: List[str] = field(default_factory=list)
    filled: Dict[str, Any] = field(default_factory=dict)
    rejected: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    latency_ms: int = 0
    revalidated: bool = False
    revalidation_passed: Optional[bool] = None

    @property
    def success(self) -> bool:
        return self.attempted and bool(self.filled) and self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "success": self.success,
            "requestedFields": list(self.requested),
            "filledFields": dict(self.filled),
            "rejectedFields": dict(self.rejected),
            "error": self.error,
            "latencyMs": self.latency_ms,
            "revalidationPassed": self.revalidation_passed,
        }


def normalize_extracted_value(name: str, value: Any) -> Any:
    """Normalize one extracted value to its wire format; None when unusable."""
    value = _sanitize_tool_arg(value)
    if value is None:
        return None
    if name in PHONE_FIELDS:
        return normalize_phone_digits(str(value))
    if name in DATE_FIELDS:
        return normalize_date_value(value)
    if name in ID_FIELDS:
        return coerce_id(value)
    if name in CLOCK_FIELDS:
        parsed = parse_clock_time(str(value))
        return parsed.strftime("%H:%M:%S") if parsed else None
    if name == "AptDateTime":
        text = str(value).strip().replace("T", " ")
        if parse_apt_datetime(text):
            return text
        day, _, clock = text.partition(" ")
        return _compose_apt_datetime(normalize_date_value(day), clock[:5] if clock else None)
    if name == "Email":
        addr = str(value).strip() if "@" in str(value) else normalize_email(str(value))
        return addr.lower() if validate_email_address(addr) else None
    if name in NAME_FIELDS:
        text = str(value).strip()
        return text if text.replace("-", "").replace("'", "").replace(" ", "").isalpha() else None
    return str(value).strip() if isinstance(value, str) else value


def slot_values_for(schema: FunctionSchema, name: str, value: Any) -> Dict[str, Any]:
    """Session slots an extracted parameter maps onto (composite fields are split)."""
    if name == "AptDateTime":
        parsed = parse_apt_datetime(value)
        if parsed:
            return {"appointment.date": parsed.date().isoformat(), "appointment.time": parsed.strftime("%H:%M")}
        return {}
    binding = schema.slot_bindings.get(name)
    if binding is None or binding.writable_path is None:
        return {}
    return {binding.writable_path: value}


class LLMExtractionFallback:
    """
    Single-shot extraction with a hard timeout.

    API errors, timeouts, and empty or malformed output become an
    unsuccessful ExtractionResult; cancellation of the parent request
    propagates.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        model: str = EXTRACTION_MODEL,
        timeout_sec: float = EXTRACTION_TIMEOUT_SEC,
        transcript_window: int = EXTRACTION_TRANSCRIPT_WINDOW,
        max_tokens: int = EXTRACTION_MAX_TOKENS,
        enabled: bool = LLM_FALLBACK_ENABLED,
        call_logger: Optional[Any] = None,
    ):
        self._client = client
        self.model = model
        self.timeout_sec = timeout_sec
        self.transcript_window = transcript_window
        self.max_tokens = max_tokens
        self.enabled = enabled
        self.call_logger = call_logger

    @property
    def client(self):
        if self._client is None:
            self._client = get_openai_client()
        return self._client

    def should_run(self, state: Optional[ConversationState]) -> bool:
        return self.enabled and state is not None and bool(state.messages)

    async def extract(
        self,
        state: ConversationState,
        schema: FunctionSchema,
        missing_fields: Sequence[str],
    ) -> ExtractionResult:
        requested = [f for f in missing_fields if not schema.is_critical(f)]
        result = ExtractionResult(function_name=schema.name, attempted=bool(requested), requested=requested)
        if not requested:
            logger.info(f"[FALLBACK] Nothing extractable for {schema.name} (only critical identifiers missing)")
            return result

        transcript = state.messages[-self.transcript_window:]
        prompt = build_extraction_prompt(
            schema.name,
            {name: schema.describe_field(name) for name in requested},
            transcript,
            today_in_clinic_tz(),
        )

        started = time.perf_counter()
        try:
            raw = await asyncio.wait_for(self._complete(prompt), timeout=self.timeout_sec)
            values = self._parse(schema.name, requested, raw)
        except asyncio.TimeoutError:
            result.error = f"timeout after {self.timeout_sec:.1f}s"
        except ExtractionError as e:
            result.error = e.reason
        finally:
            result.latency_ms = int((time.perf_counter() - started) * 1000)

        if result.error is None:
            for name in requested:
                if values.get(name) is None:
                    continue
                normalized = normalize_extracted_value(name, values[name])
                if normalized is None:
                    result.rejected[name] = values[name]
                else:
                    result.filled[name] = normalized
            if not result.filled:
                result.error = "no usable values in extraction output"

        if result.filled:
            partial: Dict[str, Any] = {}
            for name, value in result.filled.items():
                partial.update(slot_values_for(schema, name, value))
            if partial:
                state.merge(partial, SlotSource.LLM_EXTRACTION, function_name=schema.name)

        if result.success:
            logger.info(f"[FALLBACK] ✅ {schema.name}: filled {sorted(result.filled)} in {result.latency_ms}ms")
        else:
            logger.warning(f"[FALLBACK] ⚠️ {schema.name}: extraction failed ({result.error})")
        if self.call_logger is not None:
            self.call_logger.log_extraction(
                state.session_id, schema.name, requested, result.filled,
                result.success, result.latency_ms, result.error,
            )
        return result

    async def _complete(self, prompt: str) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
                temperature=0,
                max_tokens=self.max_tokens,
            )
        except OpenAIError as e:
            raise ExtractionError(f"LLM API error: {e}") from e
        except Exception as e:
            raise ExtractionError(f"LLM client error: {e}") from e
        if not response.choices:
            raise ExtractionError("empty LLM response")
        return response.choices[0].message.content or ""

    @staticmethod
    def _parse(function_name: str, requested: List[str], raw: str) -> Dict[str, Any]:
        """Validate the model output against a contract built from the requested fields only."""
        text = (raw or "").strip()
        if text.startswith("```"):
            text = text.strip("`")
            if text.lower().startswith("json"):
                text = text[4:]
        if not text:
            raise ExtractionError("empty LLM output")

        contract = create_model(
            f"{function_name}Extraction",
            __config__=ConfigDict(extra="ignore"),
            **{name: (Optional[Union[str, int, bool]], None) for name in requested},
        )
        try:
            parsed = contract.model_validate_json(text)
        except PydanticValidationError as e:
            raise ExtractionError(f"malformed LLM output: {e.error_count()} error(s)") from e
        return parsed.model_dump()
