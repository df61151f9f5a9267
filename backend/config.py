"""Configuration for the homework helper backend."""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from dotenv import load_dotenv

load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default

    normalized = raw.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    return default


def env_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        parsed = int(raw.strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


# Vendor endpoints
OPENAI_RESPONSES_URL = "https://api.openai.com/v1/responses"
OPENAI_CHAT_COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"

# Provider defaults
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"
DEFAULT_ANTHROPIC_VERSION = "2023-06-01"
CLAUDE_CODE_EXECUTION_BETA = "code-execution-2025-08-25"
DEFAULT_CLAUDE_MAX_TOKENS = 16384
DEFAULT_WEB_SEARCH_MAX_USES = 3
DEFAULT_TOOL_PAUSE_TURN_MAX = 5
WEB_SEARCH_CONTEXT_SIZES = ["low", "medium", "high"]

# Streaming request timeout (seconds); long tool-using turns can take minutes
REQUEST_TIMEOUT = float(os.getenv("PROVIDER_REQUEST_TIMEOUT", "900"))

# History window sent to providers
MAX_HISTORY_TURNS = env_positive_int("MAX_HISTORY_TURNS", 8)
MAX_CHARS_PER_TURN = env_positive_int("MAX_CHARS_PER_TURN", 12000)

EFFORT_LEVELS = ["low", "medium", "high", "max"]
LANGUAGES = ["Chinese", "English"]

# Selectable models
AVAILABLE_MODELS: List[Dict[str, Any]] = [
    {
        "id": "gemini-3-pro",
        "name": "Gemini 3 Pro",
        "provider": "gemini",
        "effort": "high",
        "description": "Google Gemini 3 Pro",
    },
    {
        "id": "gpt-5.2",
        "name": "GPT 5.2 (Medium)",
        "provider": "openai",
        "effort": "medium",
        "description": "OpenAI GPT 5.2 with medium reasoning effort",
    },
    {
        "id": "gpt-5.2-high",
        "name": "GPT 5.2 (High)",
        "provider": "openai",
        "effort": "high",
        "description": "OpenAI GPT 5.2 with high reasoning effort",
    },
    {
        "id": "gpt-5.2-pro",
        "name": "GPT 5.2 (Pro)",
        "provider": "openai",
        "effort": "medium",
        "description": "OpenAI GPT 5.2 Pro tier (routes to dedicated Pro model)",
    },
    {
        "id": "claude-opus-4-6-low",
        "name": "Claude Opus 4.6 (Low)",
        "provider": "claude",
        "effort": "low",
        "description": "Anthropic Claude Opus 4.6 with low thinking",
    },
    {
        "id": "claude-opus-4-6-high",
        "name": "Claude Opus 4.6 (Medium)",
        "provider": "claude",
        "effort": "medium",
        "description": "Anthropic Claude Opus 4.6 with medium thinking",
    },
    {
        "id": "claude-opus-4-6",
        "name": "Claude Opus 4.6 (Max)",
        "provider": "claude",
        "effort": "max",
        "description": "Anthropic Claude Opus 4.6 with max thinking",
    },
    {
        "id": "claude-sonnet-4-6",
        "name": "Claude Sonnet 4.6 (Max)",
        "provider": "claude",
        "effort": "max",
        "description": "Anthropic Claude Sonnet 4.6 with max thinking",
    },
]

# Preset model selections
REASONING_TIERS = {
    "fast": ["gemini-3-pro", "gpt-5.2", "claude-sonnet-4-6"],
    "deep": ["gemini-3-pro", "gpt-5.2-high", "claude-opus-4-6"],
}
DEFAULT_TIER = "fast"

# Title generation
TITLE_MODEL = "gpt-5-nano"
TITLE_SOURCE_MAX_CHARS = 1200

# Data directory for session storage
DATA_DIR = os.getenv("SESSIONS_DIR", "data/sessions")


def get_model_by_id(model_id: str) -> Optional[Dict[str, Any]]:
    for model in AVAILABLE_MODELS:
        if model["id"] == model_id:
            return model
    return None
