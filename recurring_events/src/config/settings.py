"""
Application settings configuration for the recurring events engine.

Centralized settings loaded from environment variables.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    """
    Engine settings loaded from environment variables.

    Environment Variables:
        EVENT_CREATION_LIMIT: Maximum number of occurrences a single
            recurrence expansion may produce (default: 500)
        EVENT_SERVICE_DB_URL: SQLAlchemy database URL (read by db.database)
    """

    # Upper bound on materialized occurrences per expansion.
    # Expansions above the limit are rejected, never truncated.
    event_creation_limit: int = Field(
        default=500,
        validation_alias="EVENT_CREATION_LIMIT",
        ge=1,
        description="Maximum occurrences generated for one recurring event"
    )

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get cached application settings instance.

    Returns:
        AppSettings: Configured application settings from environment
    """
    return AppSettings()
