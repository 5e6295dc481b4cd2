# litreview/settings/config.py  (Pydantic v2)
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # ---------- Database ----------
    DATABASE_URL: str = Field(default="")
    RUN_DB_CREATE_ALL: bool = Field(default=False)

    # ---------- LLM (Ollama /api/generate) ----------
    # Unset => compose and suggestion generators use their deterministic fallback
    OLLAMA_BASE_URL: Optional[str] = Field(default=None)
    OLLAMA_MODEL: str = Field(default="llama3.1:8b")
    COMPOSE_MODEL: Optional[str] = Field(default=None)
    SUGGESTION_MODEL: Optional[str] = Field(default=None)
    LLM_TIMEOUT_SECONDS: float = Field(default=60.0)
    LLM_MIN_INTERVAL_MS: int = Field(default=200, ge=0)
    LLM_TEMPERATURE: float = Field(default=0.4)

    # ---------- Work queue / worker ----------
    COMPOSE_QUEUE_ATTEMPTS: int = Field(default=2, ge=1)
    COMPOSE_QUEUE_BACKOFF_MS: int = Field(default=1000, ge=0)
    QUEUE_VISIBILITY_TIMEOUT_SECONDS: int = Field(default=600, ge=1)
    WORKER_POLL_SECONDS: float = Field(default=2.0)
    WORKER_CONCURRENCY: int = Field(default=1, ge=1)
    WORKER_ID: Optional[str] = Field(default=None)

    # ---------- Citation gate ----------
    # "compose" = verified + at least one locator
    # "export"  = verified + locator + pointer + context
    CITATION_READINESS_POLICY: Literal["compose", "export"] = Field(default="compose")

    LOG_LEVEL: str = Field(default="INFO")

    # ---------- pydantic-settings config ----------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # allow lower/upper env names
        extra="ignore",
    )

    @property
    def compose_model(self) -> str:
        return self.COMPOSE_MODEL or self.OLLAMA_MODEL

    @property
    def suggestion_model(self) -> str:
        return self.SUGGESTION_MODEL or self.OLLAMA_MODEL


settings = Settings()
