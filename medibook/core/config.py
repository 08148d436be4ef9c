import os
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./medibook.db")
CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:4200"])


JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.7"))
CHAT_MAX_TOOL_ROUNDS = int(os.getenv("CHAT_MAX_TOOL_ROUNDS", "8"))
CHAT_SAFETY_FILTERS = _get_bool(os.getenv("CHAT_SAFETY_FILTERS"), default=True)
CHAT_INSTRUCTIONS_PATH = os.getenv(
    "CHAT_INSTRUCTIONS_PATH",
    str(Path(__file__).resolve().parent.parent / "chat" / "instructions.prompt"),
)

SLOT_OVERLAP_TOLERANCE_MINUTES = int(os.getenv("SLOT_OVERLAP_TOLERANCE_MINUTES", "5"))
SLOT_LOOKAHEAD_DAYS = int(os.getenv("SLOT_LOOKAHEAD_DAYS", "28"))
SLOT_SEARCH_LIMIT = int(os.getenv("SLOT_SEARCH_LIMIT", "15"))
SLOT_PREVIEW_LIMIT = int(os.getenv("SLOT_PREVIEW_LIMIT", "3"))
DOCTOR_SEARCH_LIMIT = int(os.getenv("DOCTOR_SEARCH_LIMIT", "10"))

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if CHAT_MAX_TOOL_ROUNDS < 1:
        raise RuntimeError("CHAT_MAX_TOOL_ROUNDS must be at least 1.")
