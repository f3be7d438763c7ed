"""
RegScreen Shared Library
========================

Common utilities, configuration, and abstractions shared across services.

Modules:
    - config: Configuration management with Pydantic Settings
    - logging: Structured logging with structlog
    - database: Data-store client abstractions (PostgreSQL, Redis, Kafka)
    - models: Shared Pydantic models

Version: 0.1.0
"""

__version__ = "0.1.0"

from shared.config import settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "__version__",
]
