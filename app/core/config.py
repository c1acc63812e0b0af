"""
Core configuration module using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = "sqlite:///./ultimateapp.db"
    db_pool_size: int = 20
    db_max_overflow: int = 10
    db_pool_recycle: int = 3600
    db_pool_pre_ping: bool = True

    # Security Configuration
    jwt_secret_key: str = "changeme-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    bcrypt_rounds: int = 10

    # Application Configuration
    service_name: str = "ultimateapp-api"
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    log_level: str = "INFO"
    log_json: bool = True
    cors_allow_origins: List[str] = ["*"]

    # Realtime messaging
    ws_require_auth: bool = False
    ws_frame_feedback: bool = False
    ws_close_superseded: bool = False
    ws_outbound_queue_size: int = 100
    ws_idle_timeout_seconds: float = 0

    # Ride hailing
    default_ride_fare: float = 50

    # Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://localhost:4318/v1/traces"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Global settings instance
settings = Settings()
