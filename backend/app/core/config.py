"""
Configuration module for the Chat Navigation Router API.
Loads settings from environment variables.
"""
from typing import Optional

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"
    # Routing events as JSON lines on the app.telemetry logger
    telemetry_log_enabled: bool = True

    # Database (use relative path or set via environment variable)
    database_url: str = "sqlite:///./chat_router.db"

    # Bundled data (use relative path or set via environment variable)
    known_terms_snapshot_path: str = "./data/known_terms.json"
    known_terms_ttl_days: int = 7
    # When set, a snapshot whose hash differs is treated as stale
    known_terms_expected_hash: Optional[str] = None
    alias_table_path: str = "./data/aliases.json"
    docs_seed_dir: str = "./data/docs"

    # Routing behaviour
    strict_app_relevance: bool = True

    # Classifier (generative fallback) Configuration
    classifier_enabled: bool = False
    classifier_provider: str = "ollama"
    classifier_base_url: str = "http://localhost:11434"
    classifier_model: str = "llama3:latest"
    classifier_timeout_seconds: float = 2.0
    classifier_doc_style_timeout_seconds: float = 3.5
    classifier_confidence_min: float = 0.7

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
