"""
Deal Pipeline CRM Core API Configuration
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Deal Pipeline CRM Core API"
    version: str = "0.3.0"
    debug: bool = False
    environment: str = "production"

    # Security (JWT secret shared with the hosted auth platform)
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    jwt_audience: Optional[str] = "authenticated"

    # API Configuration
    api_v1_prefix: str = "/api/v1"

    # Database
    database_url: str

    # NATS Configuration
    nats_url: str = "nats://localhost:4222"
    nats_enabled: bool = True

    # Monitoring
    prometheus_enabled: bool = True
    log_level: str = "INFO"

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    # Deals
    default_currency: str = "USD"
    max_page_size: int = 200

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
