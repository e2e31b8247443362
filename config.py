from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import os


class Settings(BaseSettings):
    # Application settings
    app_name: str = "Payments Ledger"
    app_version: str = "1.0.0"

    # Pipeline settings
    lane_count: int = Field(4, ge=1, le=64)
    buffer_floor: int = Field(64, ge=1)
    buffer_ceiling: int = Field(8192, ge=1)
    bytes_per_record: int = Field(16, ge=1)  # rough size of one CSV row

    # Logging settings
    log_level: str = "WARNING"
    log_format: str = "console"  # json or console

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance for the environment named by LEDGER_ENV."""
    return get_settings_for_environment(os.getenv("LEDGER_ENV", "default"))


# Environment-specific configurations
class DevelopmentSettings(Settings):
    log_level: str = "DEBUG"
    lane_count: int = 2


class ProductionSettings(Settings):
    log_level: str = "WARNING"
    log_format: str = "json"
    lane_count: int = 8
    buffer_ceiling: int = 65536


class TestingSettings(Settings):
    log_level: str = "WARNING"  # Reduce noise in tests
    lane_count: int = 3
    buffer_floor: int = 2  # Small buffers exercise backpressure
    buffer_ceiling: int = 16


def get_settings_for_environment(env: str = "development") -> Settings:
    """Get settings for specific environment."""
    settings_map = {
        "development": DevelopmentSettings,
        "production": ProductionSettings,
        "testing": TestingSettings,
    }

    settings_class = settings_map.get(env.lower(), Settings)
    return settings_class()
