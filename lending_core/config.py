"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings


class LendingConfig(BaseSettings):
    """Lending engine and payment-recording service configuration"""

    # Storage configuration
    use_sqlite: bool = False
    database_url: str = "sqlite:///lending.db"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Business rules configuration
    allocation_tolerance: str = "0.01"  # Max drift between receipt and its split
    date_drift_threshold_days: int = 7  # Payment date vs due date audit threshold

    class Config:
        env_prefix = "LENDING_"
        env_file = ".env"
        case_sensitive = False

    @property
    def sqlite_path(self) -> str:
        """Filesystem path portion of a sqlite:/// database URL"""
        prefix = "sqlite:///"
        if self.database_url.startswith(prefix):
            return self.database_url[len(prefix):] or ":memory:"
        return self.database_url


# Global configuration instance
config = LendingConfig()


def get_config() -> LendingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LendingConfig:
    """Reload configuration from environment"""
    global config
    config = LendingConfig()
    return config
