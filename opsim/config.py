"""
Configuration module for the operations simulation core
Centralizes all environment variable access and configuration settings
"""

from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

from opsim.constants import (
    TIME_SERIES_CACHE_SIZE_BYTES,
    MIN_CACHE_FLUSH_SIZE,
    MAX_CACHE_SIZE,
)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables

    All settings can be overridden via environment variables prefixed with
    ``OPSIM_`` (for example ``OPSIM_LOG_LEVEL=DEBUG``).
    """

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "human"
    log_file: Optional[str] = None
    log_max_bytes: int = 10 * 1024 * 1024  # 10 MB
    log_backup_count: int = 5

    # Environment
    env: str = "development"  # "development" or "production"
    debug: bool = False

    # CORS configuration
    allowed_origins: str = "*"  # Comma-separated list of origins

    # Request limits
    max_request_size: int = 10 * 1024 * 1024  # 10 MB
    simulation_timeout: float = 300.0  # seconds

    # Simulation workspace
    simulation_folder: str = "simulations"
    max_steps: int = 10_000

    # Problem defaults
    time_series_cache_size: int = TIME_SERIES_CACHE_SIZE_BYTES  # bytes per series, 0 disables
    allow_fails: bool = False

    # Result store flushing
    cache_flush_min_size: int = MIN_CACHE_FLUSH_SIZE
    cache_flush_max_size: int = MAX_CACHE_SIZE

    # Number of finished simulations the API keeps around
    simulation_store_max_size: int = 20
    simulation_ttl_hours: int = 24

    model_config = SettingsConfigDict(
        env_prefix="OPSIM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def log_format_json(self) -> bool:
        """Check if logging should use JSON format"""
        return self.log_format.lower() == "json"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.env.lower() == "production"

    @property
    def allowed_origins_list(self) -> List[str]:
        """Get allowed origins as a list"""
        origins = [origin.strip() for origin in self.allowed_origins.split(",")]
        if "*" in origins:
            return ["*"]
        return origins

    def __init__(self, **kwargs):
        """Initialize settings with environment variable overrides"""
        super().__init__(**kwargs)
        # Force JSON logging in production if not explicitly set
        if self.is_production and not self.log_format_json:
            self.log_format = "json"


# Global settings instance (singleton)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton pattern)

    Returns:
        Settings instance with current configuration
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
