from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"

    gemini_api_key: str | None = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-pro"
    gemini_timeout_seconds: float = 30.0

    ai_min_interval_seconds: float = 1.0
    ai_temperature: float = 0.3
    ai_max_output_tokens: int = 2048
    ai_max_chars: int = 12000

    extract_max_concurrent: int = 3
    import_max_file_bytes: int = 10 * 1024 * 1024
    default_template_id: str | None = None


settings = Settings()
