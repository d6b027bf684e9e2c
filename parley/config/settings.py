# parley/config/settings.py
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from parley.exceptions.config import ConfigError

logger = logging.getLogger("Settings")

SUPPORTED_PROVIDERS = {"openai", "ollama"}


class Settings(BaseSettings):
    # === Provider ===
    llm_provider: str = "openai"
    completion_model: str = "gpt-4o-mini"
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    ollama_host: str = "http://localhost:11434"
    ollama_api_key: Optional[str] = None
    # Passed through to the provider (temperature, top_p, max_tokens...).
    request_options: Dict[str, Any] = Field(default_factory=dict)

    # === Session Behaviour ===
    generating_indicator_delay: float = 0.5

    # === Main Conversation Preferences ===
    main_conversation_id: str = "main"
    main_context_messages: int = 0
    main_prompt: str = ""

    # === Storage & Logging ===
    database_path: Path = Path("parley.db")
    log_level: str = "INFO"

    # === Pydantic V2 Configuration ===
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_and_compute(self) -> "Settings":
        """Validate and normalise derived fields."""

        # 1. Log level
        if self.log_level.upper() not in logging._nameToLevel:
            raise ConfigError(
                f"Invalid log level: {self.log_level}",
                field_name="log_level",
                invalid_value=self.log_level,
            )
        self.log_level = self.log_level.upper()

        # 2. Provider selection
        normalized_provider = (self.llm_provider or "openai").strip().lower()
        if normalized_provider not in SUPPORTED_PROVIDERS:
            raise ConfigError(
                "Invalid llm_provider value. Expected 'openai' or 'ollama'. "
                f"Got: {self.llm_provider}",
                field_name="llm_provider",
                invalid_value=self.llm_provider,
            )
        self.llm_provider = normalized_provider

        if not self.completion_model.strip():
            raise ConfigError(
                "COMPLETION_MODEL must not be empty.", field_name="completion_model"
            )

        # 3. Session timings and counts
        if self.generating_indicator_delay < 0:
            raise ConfigError(
                "GENERATING_INDICATOR_DELAY must be >= 0.",
                field_name="generating_indicator_delay",
                invalid_value=self.generating_indicator_delay,
            )
        if self.main_context_messages < 0:
            raise ConfigError(
                "MAIN_CONTEXT_MESSAGES must be >= 0.",
                field_name="main_context_messages",
                invalid_value=self.main_context_messages,
            )

        return self

    # === Convenience Properties ===

    @property
    def log_level_number(self) -> int:
        return logging._nameToLevel[self.log_level]


def load_settings(env_file: Optional[Path] = None, **overrides: Any) -> Settings:
    """Build Settings from the environment, an optional .env file and overrides."""
    if env_file is not None:
        return Settings(_env_file=env_file, **overrides)
    return Settings(**overrides)
