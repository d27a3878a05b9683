"""
Configuration and constants for the receptionist slot-filling core.

Contains all environment variables, client factories, and tuning parameters.
"""

from __future__ import annotations

import os
import logging
from typing import Dict, Optional
from dotenv import load_dotenv
from openai import AsyncOpenAI

# =============================================================================
# Load Environment
# =============================================================================

load_dotenv(".env.local")

# =============================================================================
# EXTRACTION FALLBACK TUNING
# =============================================================================
"""
FALLBACK TUNING GUIDE:
- The LLM fallback runs at most once per request, only after validation fails
- Timeout bounds the whole external call; on expiry the original validation error is returned
- Transcript window bounds how many recent messages are sent to the model
"""

LLM_FALLBACK_ENABLED = os.getenv("LLM_FALLBACK_ENABLED", "1") == "1"
EXTRACTION_MODEL = os.getenv("EXTRACTION_MODEL", "gpt-4o-mini")
EXTRACTION_TIMEOUT_SEC = float(os.getenv("EXTRACTION_TIMEOUT_SEC", "4.0"))
EXTRACTION_TRANSCRIPT_WINDOW = int(os.getenv("EXTRACTION_TRANSCRIPT_WINDOW", "12"))
EXTRACTION_MAX_TOKENS = int(os.getenv("EXTRACTION_MAX_TOKENS", "300"))

# Conversations idle longer than this (and not booked) export as "abandoned"
ABANDONED_AFTER_MINUTES = int(os.getenv("ABANDONED_AFTER_MINUTES", "30"))

# Mute noisy transport debug logs
logging.getLogger("hpack").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

# =============================================================================
# STRUCTURED LOGGER
# =============================================================================

logger = logging.getLogger("receptionist_core")
logger.setLevel(logging.DEBUG if os.getenv("LOG_DEBUG", "0") == "1" else logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"
    ))
    logger.addHandler(handler)

# =============================================================================
# ENVIRONMENT & APPLICATION CONFIG
# =============================================================================

ENVIRONMENT = (os.getenv("ENVIRONMENT") or "development").strip().lower()

DEFAULT_TZ = os.getenv("DEFAULT_TIMEZONE", "America/Los_Angeles")
DEFAULT_PHONE_REGION = os.getenv("DEFAULT_PHONE_REGION", "US")

# Session id prefix -> channel (checked in order)
CHANNEL_PREFIXES: Dict[str, str] = {
    "whatsapp_": "whatsapp",
    "lexi_twilio_": "sms",
    "twilio_": "voice",
    "web_": "web",
}
DEFAULT_CHANNEL = "voice"

# =============================================================================
# SUPABASE CONFIGURATION (durable hand-off of ledger records, optional)
# =============================================================================

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
SUPABASE_LOGGING_ENABLED = os.getenv("SUPABASE_LOGGING", "1") == "1"
FUNCTION_CALLS_TABLE = os.getenv("FUNCTION_CALLS_TABLE", "function_calls")
LOG_BUFFER_SIZE = int(os.getenv("LOG_BUFFER_SIZE", "100"))  # ledger rows before an automatic flush

_supabase_client = None


def get_supabase_client():
    """
    Lazily create the Supabase client.
    Returns None when credentials are missing; persistence is then disabled.
    """
    global _supabase_client
    if _supabase_client is not None:
        return _supabase_client
    if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
        return None

    from supabase import create_client

    _supabase_client = create_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
    logger.info("[CONFIG] ✓ Supabase client ready for ledger hand-off")
    return _supabase_client

# =============================================================================
# OPENAI CONFIGURATION
# =============================================================================

_openai_client: Optional[AsyncOpenAI] = None


def get_openai_client() -> AsyncOpenAI:
    """Async OpenAI client for the structured extraction fallback (created on first use)."""
    global _openai_client
    if _openai_client is None:
        _openai_client = AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY"))
    return _openai_client
