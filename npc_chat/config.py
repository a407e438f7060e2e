"""Application configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent.parent

# OpenAI-compatible providers
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_API_URL = os.getenv("OPENAI_API_URL", "https://api.openai.com/v1")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

DEEPSEEK_API_KEY = os.getenv("DEEPSEEK_API_KEY")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
OPENROUTER_REFERER = os.getenv("OPENROUTER_REFERER", "https://github.com")
OPENROUTER_TITLE = os.getenv("OPENROUTER_TITLE", "NPC Chat")

# Storage
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "sqlite")
DATABASE_PATH = Path(os.getenv("DATABASE_PATH", str(BASE_DIR / "npc_chat.db")))

# Agents
SYSTEM_PROMPT_PATH = Path(os.getenv("SYSTEM_PROMPT_PATH", str(BASE_DIR / "system_prompt.txt")))
AGENTS_PATH = Path(os.getenv("AGENTS_PATH", str(BASE_DIR / "agents.json")))
ALLOW_UNKNOWN_AGENTS = os.getenv("ALLOW_UNKNOWN_AGENTS", "true").lower() == "true"

# Pipeline limits
MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", "5000"))
MAX_EVENT_CONTENT_LENGTH = int(os.getenv("MAX_EVENT_CONTENT_LENGTH", "50000"))
CONTEXT_LIMIT = int(os.getenv("CONTEXT_LIMIT", "20"))
MAX_CONTEXT_LIMIT = int(os.getenv("MAX_CONTEXT_LIMIT", "100"))

# Reply generation
REPLY_GENERATOR = os.getenv("REPLY_GENERATOR", "openai")
GENERATION_TIMEOUT = float(os.getenv("GENERATION_TIMEOUT", "30"))
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "2"))
LLM_RETRY_DELAY = float(os.getenv("LLM_RETRY_DELAY", "1"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7"))

# Client-side polling
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "1"))
POLL_MAX_ATTEMPTS = int(os.getenv("POLL_MAX_ATTEMPTS", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

API_VERSION = "1.0.0"


def load_system_prompt() -> str:
    """Load the default system prompt from file."""
    return SYSTEM_PROMPT_PATH.read_text(encoding="utf-8")
