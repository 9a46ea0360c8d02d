"""Application configuration using Pydantic Settings."""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


# Project root directory
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Central application settings, loaded from environment / .env file."""

    # ── GROQ (OpenAI-compatible) text generation ──
    groq_api_key: str = Field(default="", description="GROQ API key")
    groq_base_url: str = Field(
        default="https://api.groq.com/openai/v1", description="GROQ API base URL"
    )
    groq_model: str = Field(
        default="llama-3.3-70b-versatile", description="Model used for report narratives"
    )
    llm_temperature: float = Field(default=0.2, description="LLM temperature for narratives")
    llm_max_tokens: int = Field(default=4096, description="LLM max output tokens")
    llm_timeout_seconds: float = Field(
        default=60.0, description="Hard timeout for a single narrative request"
    )

    # ── Red-flag detector defaults ──
    default_window_days: int = Field(default=30, description="Rolling window for detection rules")
    fractioning_threshold: Decimal = Field(
        default=Decimal("10000"), description="Reporting threshold used by the structuring rule"
    )
    fan_in_out_threshold: int = Field(
        default=10, description="Distinct counterparties that trigger fan-in/fan-out"
    )
    circularity_window: int = Field(default=30, description="Days allowed for a circular chain")
    incompatible_profile_multiplier: Decimal = Field(
        default=Decimal("5"), description="Multiple of the baseline considered incompatible"
    )

    # ── Metrics ──
    top_counterparties_limit: int = Field(default=10, description="Size of the counterparty ranking")

    # ── Paths ──
    data_dir: Path = Field(default=PROJECT_ROOT / "data")
    store_dir: Path = Field(default=PROJECT_ROOT / "data" / "cases")

    model_config = {
        "env_file": str(PROJECT_ROOT / ".env"),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache()
def get_settings() -> Settings:
    """Return cached singleton settings instance."""
    return Settings()
