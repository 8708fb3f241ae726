"""Application configuration using pydantic-settings."""

from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase
    supabase_url: str
    supabase_key: str
    supabase_service_key: str

    # Agency named in client-facing packages and reports
    agency_name: str = "VA Agency"

    # LLM provider used by the analysis pipeline and the KB chat
    llm_provider: Literal["anthropic", "openai"] = "anthropic"
    llm_timeout_seconds: float = 120.0

    # Anthropic (Claude Sonnet 4 for analysis stages)
    anthropic_api_key: Optional[str] = None
    claude_model: str = "claude-sonnet-4-20250514"

    # OpenAI (optional - only required when llm_provider is "openai")
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"
    # Cheaper model for chat insight extraction; falls back to the analysis model
    insight_extraction_model: Optional[str] = None

    # Learning events
    learning_min_confidence: int = 80
    learning_batch_size: int = 100
    learning_duplicate_window_days: int = 30
    learning_similarity_threshold: float = 0.85
    learning_decay_max_age_days: int = 180
    learning_decay_min_ratio: float = 0.5
    learning_decay_grace_days: int = 7

    # Enrichment worker
    enrichment_queue_size: int = 500

    # Website summarizer
    website_fetch_timeout: float = 15.0
    website_max_chars: int = 20000

    # KB chat
    chat_max_history: int = 10
    chat_max_response_tokens: int = 2000

    # CORS
    cors_origins: str = "http://localhost:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings for testing."""
    global _settings
    _settings = None
