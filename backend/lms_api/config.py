from pydantic import BaseModel, Field
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv


_ROOT_DIR = Path(__file__).resolve().parents[2]
load_dotenv(_ROOT_DIR / ".env")
load_dotenv()  # fallback to current working directory


def _normalize_env(value: Optional[str], default: str) -> str:
    if value is None:
        return default
    cleaned = value.strip().lower()
    return cleaned or default


def _resolve_access_token_expiry() -> Optional[int]:
    raw = os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES")
    if raw is None or not raw.strip():
        return None
    try:
        minutes = int(raw)
    except ValueError:
        return None
    return minutes if minutes > 0 else None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class ChatbotSettings(BaseModel):
    gemini_api_key: Optional[str] = None
    chat_model: str = "gemini-1.5-flash"
    embedding_model: str = "models/text-embedding-004"
    search_limit: int = 5
    search_threshold: float = 0.7
    cache_ttl_seconds: int = 3600
    cache_max_entries: int = 1024


def _load_chatbot_settings() -> ChatbotSettings:
    return ChatbotSettings(
        gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
        chat_model=os.getenv("GEMINI_CHAT_MODEL", "gemini-1.5-flash"),
        embedding_model=os.getenv("GEMINI_EMBEDDING_MODEL", "models/text-embedding-004"),
        search_limit=_env_int("VECTOR_SEARCH_LIMIT", 5),
        search_threshold=_env_float("VECTOR_SEARCH_THRESHOLD", 0.7),
        cache_ttl_seconds=_env_int("VECTOR_CACHE_TTL_SECONDS", 3600),
        cache_max_entries=_env_int("VECTOR_CACHE_MAX_ENTRIES", 1024),
    )


class Settings(BaseModel):
    app_name: str = "LMS API"
    secret_key: str = os.getenv("SECRET_KEY", "dev-secret-key-change")
    access_token_expire_minutes: Optional[int] = _resolve_access_token_expiry()
    algorithm: str = os.getenv("ALGORITHM", "HS256")
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./data.db")
    debug: bool = _env_bool("DEBUG", False)
    environment: str = _normalize_env(os.getenv("APP_ENV") or os.getenv("ENVIRONMENT"), "dev")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    cors_origins: List[str] = _env_list(
        "CORS_ORIGINS",
        ["http://localhost:5173", "http://127.0.0.1:5173"],
    )
    # Seconds between scheduled publish promotions; 0 disables the loop.
    publish_scheduler_interval_seconds: int = _env_int("PUBLISH_SCHEDULER_INTERVAL_SECONDS", 60)
    chatbot: ChatbotSettings = Field(default_factory=_load_chatbot_settings)

    @property
    def is_production(self) -> bool:
        return self.environment in {"prod", "production"}


settings = Settings()
