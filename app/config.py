# app/config.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env lives at the repo root, next to pyproject.toml
ENV_FILE = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(ENV_FILE, override=False)


class Settings(BaseSettings):
    # ---- App ----
    APP_VERSION: str = "0.1.0"
    USER_AGENT: str = "feed-enrichment/0.1"

    # ---- Remote analysis (OpenAI-compatible chat completions) ----
    # Optional on purpose: a missing key means "use local analysis".
    LLM_API_KEY: Optional[str] = Field(default_factory=lambda: os.getenv("LLM_API_KEY"))
    LLM_BASE_URL: str = "https://api.perplexity.ai"
    LLM_MODEL: str = "llama-3.1-sonar-small-128k-online"
    LLM_TIMEOUT_S: float = 30.0
    LLM_SYSTEM_PROMPT: Optional[str] = None

    # ---- Enrichment queue ----
    ENRICHMENT_BATCH_SIZE: int = 2
    ENRICHMENT_BATCH_DELAY_MS: int = 500
    ENRICHMENT_ITEM_TIMEOUT_S: float = 45.0

    # ---- Fetching ----
    CONTENT_FETCH_TIMEOUT_S: float = 15.0
    FEED_FETCH_TIMEOUT_S: float = 15.0

    # ---- Item store ----
    RETENTION_HOURS: int = 24
    CACHE_DB_PATH: str = "news_cache.db"
    BASELINE_KEYWORD_LIMIT: int = 3
    FALLBACK_KEYWORD_LIMIT: int = 5

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()


def require_llm() -> str:
    """
    Runtime check with a clear message when remote analysis is forced without a key.
    """
    if not settings.LLM_API_KEY:
        raise RuntimeError(
            "LLM_API_KEY is missing. Set it in the environment or in "
            f"{ENV_FILE}."
        )
    return settings.LLM_API_KEY
