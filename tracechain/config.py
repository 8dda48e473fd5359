"""
Configuration management for tracechain.
"""

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings loaded from environment variables."""

    # Environment metadata attached to reported records
    project: Optional[str] = Field(default=None, validation_alias=AliasChoices("TRACECHAIN_PROJECT"))
    computer_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("COMPUTERNAME", "HOSTNAME")
    )
    username: Optional[str] = Field(default=None, validation_alias=AliasChoices("USERNAME", "USER"))

    # Reporting
    errors_dir: str = Field(default="errors", validation_alias=AliasChoices("TRACECHAIN_ERRORS_DIR"))

    # Logging
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("TRACECHAIN_LOG_LEVEL"))

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True


_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the cached Settings instance (lazy initialization)."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance


def reset_settings() -> None:
    """Drop the cached instance so the next get_settings() rereads the environment."""
    global _settings_instance
    _settings_instance = None
