"""Configuration management for the application."""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application Configuration
    app_env: str = "development"
    log_level: str = "INFO"
    log_dir: str = "logs"

    # Database Configuration
    database_url: str = "sqlite+aiosqlite:///./vitalai.db"
    store_timeout_seconds: float = 10.0

    # LLM tuning: "database", "memory" or "none"
    tuning_storage_backend: str = "database"
    feedback_window_days: int = 7
    analysis_interval_hours: float = 24.0
    min_feedback_count: int = 3

    # Document storage: "local" or "s3"
    blob_storage_backend: str = "local"
    blob_storage_path: str = "./document_store"
    public_base_url: str = "http://localhost:8000"
    max_upload_bytes: int = 50 * 1024 * 1024
    s3_bucket: Optional[str] = None
    s3_region: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None

    # Generation API (any OpenAI-compatible endpoint)
    llm_api_key: Optional[str] = None
    llm_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    llm_model: str = "gemini-1.5-flash"

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
