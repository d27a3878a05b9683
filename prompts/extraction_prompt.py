"""
Prompt for the structured extraction fallback.

Only the still-missing fields are listed, and only a bounded window of the
transcript is included.
"""

from datetime import date
from typing import Dict, Iterable


EXTRACTION_SYSTEM_PROMPT = (
    "You are a precise data extraction assistant for a dental office. "
    "Return only a JSON object. Never invent values that the caller did not say."
)


EXTRACTION_PROMPT = """Extract booking details from this dental office conversation.

═══════════════════════════════════════════════════════════════════════════════
📋 CONVERSATION (most recent last)
═══════════════════════════════════════════════════════════════════════════════
{transcript}

═══════════════════════════════════════════════════════════════════════════════
🎯 FIELDS NEEDED BY {function_name}
═══════════════════════════════════════════════════════════════════════════════
{field_lines}

Return a JSON object with EXACTLY these keys: {keys}
Use null for anything the user did not clearly say.

RULES:
• TODAY IS {today} (current year {year}). Resolve "tomorrow", "next Friday" etc. from today.
• Dates as YYYY-MM-DD: "August 12, 1988" → "1988-08-12".
• Phone numbers as 10 digits only: "six one nine, five five five..." → "619555...".
• Spoken emails: "john dot smith at gmail dot com" → "john.smith@gmail.com".
• Only values spoken by the USER count; ignore guesses made by the assistant.
• No other keys, no commentary, no markdown."""


def format_transcript(messages: Iterable) -> str:
    lines = []
    for m in messages:
        role = getattr(m, "role", None)
        role = getattr(role, "value", role) or "user"
        lines.append(f"{str(role).upper()}: {getattr(m, 'content', '')}")
    return "\n".join(lines) or "(empty)"


def build_extraction_prompt(
    function_name: str,
    fields: Dict[str, str],
    messages: Iterable,
    today: date,
) -> str:
    """fields maps each requested parameter name to its description."""
    field_lines = "\n".join(f"• {name}: {description}" for name, description in fields.items())
    return EXTRACTION_PROMPT.format(
        transcript=format_transcript(messages),
        function_name=function_name,
        field_lines=field_lines,
        keys=", ".join(fields),
        today=today.isoformat(),
        year=today.year,
    )
