from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    Notes store calendar dates without a zone, so every timestamp the
    engine compares against them is kept naive UTC.
    """
    return datetime.now(UTC).replace(tzinfo=None)


class Settings(BaseSettings):
    app_name: str = "Notes Tutor"
    vault_path: Path = Path("notes")
    note_pattern: str = "*.md"
    llm_provider: Literal["anthropic", "openrouter"] = "anthropic"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openrouter_api_key: str = ""
    openrouter_model: str = "anthropic/claude-sonnet-4.5"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    llm_max_tokens: int = 2048
    llm_temperature: float = 0.7
    llm_timeout_seconds: float = 120.0
    llm_rate_limit_rpm: int = 50
    llm_input_price_per_million: float = 3.0
    llm_output_price_per_million: float = 15.0
    target_retention: float = 0.9
    enable_fuzz: bool = True
    maximum_interval: int = 36500
    fuzz_seed: int | None = None
    wrap_student_replies: bool = False
    session_ttl_seconds: int = 7200  # 2 hours
    debug: bool = False

    model_config = {"env_prefix": "NOTES_TUTOR_", "env_file": ".env"}


settings = Settings()
