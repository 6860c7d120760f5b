"""
Centralised engine settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    # ── Snapshot store (Postgres) ────────────────────────
    postgres_user: str = "blocks"
    postgres_password: str = "blocks_pw"
    postgres_db: str = "reports"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    snapshot_backend: str = "memory"  # memory | sql

    # ── Providers ────────────────────────────────────────
    provider_gateway_url: str = "http://localhost:8081"
    provider_timeout_seconds: float = 30.0

    # ── Narrative (LLM) ──────────────────────────────────
    llm_provider: str = "mock"  # mock | openai | anthropic
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    narrative_max_concurrency: int = 3
    bulk_progress_clear_seconds: float = 2.0

    # ── Engine ───────────────────────────────────────────
    resolution_debounce_ms: int = 300
    default_block_limit: int = 10
    api_port: int = 8000
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
