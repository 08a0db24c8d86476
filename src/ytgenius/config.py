from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Loads keys from process env, and also from a local .env file for convenience.
    model_config = SettingsConfigDict(env_prefix="", extra="ignore", env_file=".env", env_file_encoding="utf-8")

    data_dir: str = "data"

    # Keys
    gemini_api_key: str | None = None

    # Models
    gemini_image_model: str = "gemini-2.0-flash-preview-image-generation"

    default_aspect_ratio: str = "16:9"

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]


settings = Settings()
