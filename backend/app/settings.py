from __future__ import annotations

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

REPO_ROOT = Path(__file__).resolve().parents[2]
ENV_FILE = REPO_ROOT / ".env"
SEED_DIR = Path(__file__).resolve().parent / "data"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE), env_file_encoding="utf-8", extra="ignore"
    )

    DEBUG: bool = False

    # persistence directory (defaults to ~/.cavens-data)
    DATA_DIR: Path | None = None

    # CORS allow origins (comma-separated). Default empty (no cross-origin).
    CORS_ALLOW_ORIGINS: str = ""

    # city used when neither the request nor the message names one
    DEFAULT_CITY: str = "Dubai"

    # Language model (OpenAI-compatible chat completions, OpenRouter by default)
    OPENROUTER_API_KEY: str | None = None
    LLM_API_BASE: str = "https://openrouter.ai/api/v1"
    LLM_APP_REFERER: str = "https://cavens.app"
    LLM_APP_TITLE: str = "Cavens AI Assistant"
    CHAT_MODEL: str = "openai/gpt-4o-mini"
    LLM_TIMEOUT_SECONDS: float = 10.0
    LLM_CONNECT_TIMEOUT_SECONDS: float = 5.0
    CHAT_INTENT_TIMEOUT_SECONDS: float = 8.0
    CHAT_INTENT_MAX_TOKENS: int = 50
    CHAT_INTENT_TEMPERATURE: float = 0.1
    CHAT_RESPONSE_MAX_TOKENS: int = 150
    CHAT_RESPONSE_TEMPERATURE: float = 0.2
    CHAT_PLAN_MAX_TOKENS: int = 300

    # Streaming transport
    CHAT_HEARTBEAT_SECONDS: float = 30.0
    CHAT_TOKEN_DELAY_MS: int = 20
    CHAT_QUERY_LIMIT: int = 10

    # Geo distance
    GOOGLE_MAPS_API_KEY: str | None = None
    DISTANCE_MATRIX_URL: str = "https://maps.googleapis.com/maps/api/distancematrix/json"
    GEO_TIMEOUT_SECONDS: float = 6.0

    # Observability
    SENTRY_DSN: str | None = None
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_RELEASE: str | None = None
    SENTRY_TRACES_SAMPLE_RATE: float = 0.2

    @property
    def allow_origins(self) -> list[str]:
        s = (self.CORS_ALLOW_ORIGINS or "").strip()
        if s == "*":
            return ["*"]
        if s == "":
            return []
        return [part.strip() for part in s.split(",") if part.strip()]

    @property
    def data_dir(self) -> Path:
        # Pydantic treats an empty string in `.env` as Path('.') which would point to the
        # repository root. Blank values count as unset and fall back to the home directory.
        def _materialize(path: Path) -> Path:
            path.mkdir(parents=True, exist_ok=True)
            return path

        raw_env = os.getenv("DATA_DIR")
        if raw_env is not None:
            trimmed = raw_env.strip()
            if trimmed:
                return _materialize(Path(trimmed).expanduser().resolve())
            return _materialize(Path.home() / ".cavens-data")

        if self.DATA_DIR is not None:
            candidate = Path(self.DATA_DIR).expanduser()
            candidate_str = str(candidate).strip()
            if candidate_str and candidate_str not in {".", "./", ".\\"}:
                return _materialize(candidate.resolve())
        return _materialize(Path.home() / ".cavens-data")

    @property
    def llm_enabled(self) -> bool:
        return bool((self.OPENROUTER_API_KEY or "").strip())


settings = Settings()
