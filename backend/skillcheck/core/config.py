"""
Service configuration
Reads from environment variables and the .env file via Pydantic Settings
"""
from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Field names map to upper-case environment variables
    (mongo_uri -> MONGO_URI, question_period_seconds -> QUESTION_PERIOD_SECONDS, ...)
    """
    app_name: str = "SkillCheck Assessment API"
    debug: bool = False
    log_level: str = "INFO"

    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "skillcheck"

    # Upstream question authoring / analysis
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: Optional[str] = None
    generation_max_retries: int = 3

    # Recruiter bearer tokens are issued by the auth service, we only verify them
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"

    cors_origins: str = "http://localhost:3000"
    rate_limit_storage_uri: str = "memory://"
    start_session_rate_limit: str = "30/minute"

    # Pool and session shape
    pool_size: int = 50
    min_pool_size: int = 40
    assignment_size: int = 20
    question_period_seconds: int = 40
    answer_grace_seconds: int = 2
    max_topic_length: int = 2000
    generation_claim_timeout_seconds: int = 600
    default_language: str = "es"
    require_mobile_device: bool = False

    # Notification sink
    notification_webhook_urls: str = ""
    notification_timeout_seconds: float = 10.0
    notification_max_redirects: int = 5

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def notification_urls(self) -> List[str]:
        return [url.strip() for url in self.notification_webhook_urls.split(",") if url.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get service settings (cached)"""
    return Settings()
