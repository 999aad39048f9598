# config.py
import os

from dotenv import load_dotenv

load_dotenv()


def _split(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


# --- Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./flashquiz.db")
DB_STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "5000"))

# --- Flashcard platform
PLATFORM_HOST = os.getenv("PLATFORM_HOST", "quizlet.com").strip().lower()
PLATFORM_SESSION_COOKIE = os.getenv("PLATFORM_SESSION_COOKIE", "").strip()
PLATFORM_SESSION_COOKIE_NAME = os.getenv("PLATFORM_SESSION_COOKIE_NAME", "qlts").strip()
SCRAPER_TIMEOUT_SECONDS = float(os.getenv("SCRAPER_TIMEOUT_SECONDS", "10"))
SCRAPER_HEADLESS = os.getenv("SCRAPER_HEADLESS", "true").lower() != "false"

# --- Gemini
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "").strip()
GEMINI_MODEL = (os.getenv("GEMINI_MODEL") or "gemini-1.5-flash").strip()
GEMINI_FALLBACK_MODELS = _split(
    os.getenv("GEMINI_FALLBACK_MODELS", "gemini-1.5-flash-8b,gemini-1.5-pro")
)
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "30"))
AI_TEMPERATURE = float(os.getenv("AI_TEMPERATURE", "0.7"))
AI_CONCURRENCY = int(os.getenv("AI_CONCURRENCY", "4"))

# "batch" (one call per set) or "per_question" (one call per flashcard)
GENERATION_MODE = os.getenv("GENERATION_MODE", "batch").strip().lower()

# --- App
DEFAULT_OWNER_ID = os.getenv("DEFAULT_OWNER_ID", "local-user")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
APP_PORT = int(os.getenv("APP_PORT", "8000"))
