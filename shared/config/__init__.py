"""
Configuration Module
====================

Centralized configuration management using Pydantic Settings.
Loads from environment variables with type validation and defaults.

Usage:
    from shared.config import settings

    print(settings.environment)
    print(settings.screening.cache_backend)
"""

from shared.config.settings import (
    CacheBackend,
    CompletenessScheme,
    Environment,
    LogLevel,
    ScreeningSettings,
    Settings,
    get_settings,
)


# Global settings instance (singleton)
settings = get_settings()

__all__ = [
    "Settings",
    "ScreeningSettings",
    "get_settings",
    "settings",
    "Environment",
    "LogLevel",
    "CacheBackend",
    "CompletenessScheme",
]
