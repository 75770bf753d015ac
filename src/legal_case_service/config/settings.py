"""Service configuration settings."""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service configuration
    service_name: str = "legal-case-service"
    environment: str = "development"
    port: int = 8003

    # Database configuration
    database_url: str = "sqlite+aiosqlite:///./legal_cases.db"
    case_storage_type: str = "inmemory"
    persistence_timeout_seconds: float = 5.0
    connection_retry_attempts: int = 5
    connection_retry_delay_seconds: float = 1.0

    # Lifecycle policy
    escalation_threshold_days: int = 7
    # Background court-date sweep; 0 disables it
    escalation_sweep_interval_seconds: float = 3600.0
    reassignment_cooldown_seconds: int = 0
    default_assignment_strategy: str = "least_loaded"

    # Audit history paging
    history_page_size: int = 50
    max_history_page_size: int = 500

    # Identity directory (JSON file with users and advocate profiles)
    identity_directory_path: Optional[str] = None

    # CORS configuration
    cors_origins: str = "*"

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]


# Global settings instance
settings = Settings()
