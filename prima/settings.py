"""
Centralized configuration for the PRIMA messaging service.

Values come from the environment (optionally a .env file).  Anything a
request needs to branch on is copied into a per-request config object by
the caller, never toggled at module level.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# --- Database ---
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./prima.db")

# --- Redis (empty or "memory://" disables it) ---
REDIS_URL = os.getenv("REDIS_URL", "")

# --- Inbound webhook ---
WEBHOOK_TOKEN = os.getenv("WEBHOOK_TOKEN", "")
IDEMPOTENCY_TTL_SECONDS = int(os.getenv("IDEMPOTENCY_TTL_SECONDS", "86400"))

# --- Intent classification (Gemini) ---
USE_LLM = _env_bool("USE_LLM", "true")
INTENT_MODEL = os.getenv("INTENT_MODEL", "gemini-2.0-flash")
INTENT_TIMEOUT_SECONDS = float(os.getenv("INTENT_TIMEOUT_SECONDS", "10"))
INTENT_CONFIDENCE_THRESHOLD = float(os.getenv("INTENT_CONFIDENCE_THRESHOLD", "0.6"))

# --- Outbound WhatsApp provider: fonnte | twilio | harness ---
WHATSAPP_PROVIDER = os.getenv("WHATSAPP_PROVIDER", "fonnte").strip().lower()
FONNTE_TOKEN = os.getenv("FONNTE_TOKEN", "")
FONNTE_API_URL = os.getenv("FONNTE_API_URL", "https://api.fonnte.com/send")

# --- Conversation windows ---
VERIFICATION_CONTEXT_HOURS = int(os.getenv("VERIFICATION_CONTEXT_HOURS", "48"))
CONFIRMATION_CONTEXT_HOURS = int(os.getenv("CONFIRMATION_CONTEXT_HOURS", "24"))
DEFAULT_CONTEXT_HOURS = int(os.getenv("DEFAULT_CONTEXT_HOURS", "24"))
FOLLOWUP_DELAY_MINUTES = int(os.getenv("FOLLOWUP_DELAY_MINUTES", "120"))

# --- Phone numbers ---
DEFAULT_COUNTRY_CODE = os.getenv("DEFAULT_COUNTRY_CODE", "62")

# --- Server ---
PORT = int(os.getenv("PORT", "8080"))
