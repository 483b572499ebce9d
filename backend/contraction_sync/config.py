"""Application configuration management."""

from typing import List, Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.debug:
            self.log_level = "DEBUG"

    # Local store
    database_url: str = "sqlite:///./contractions.db"

    # CORS
    cors_origins: str = "http://localhost:5173"

    # Application
    debug: bool = False
    log_level: str = "INFO"
    api_v1_str: str = "/api/v1"

    # Remote backend: 'none', 'sheets' or 'realtime'
    sync_backend: str = "none"
    sheets_script_url: Optional[str] = None
    sheets_sheet_name: str = "Contractions"
    realtime_user_id: Optional[str] = None

    # Sync
    sync_interval_seconds: int = 60
    request_timeout_seconds: float = 15.0
    queue_max_retries: int = 5
    queue_retry_delays: str = "1,2,5,10,30"

    # History
    history_max_size: int = 50

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def retry_delays(self) -> Tuple[float, ...]:
        """Parse the backoff schedule (seconds) from comma-separated string."""
        return tuple(float(d.strip()) for d in self.queue_retry_delays.split(",") if d.strip())


# Global settings instance
settings = Settings()
