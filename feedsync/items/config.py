"""Configuration for item queries and retention."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ItemsConfig(BaseSettings):
    """Settings for feed queries and item retention."""

    model_config = SettingsConfigDict(
        env_prefix="ITEMS_",
        case_sensitive=False,
        extra="ignore",
    )

    default_limit: int = Field(default=20, ge=1, description="Items returned when no limit is given")
    max_limit: int = Field(default=100, ge=1, description="Upper bound on a single feed query")
    retention_days: int = Field(
        default=90,
        ge=1,
        description="Items published earlier than this are removed by cleanup",
    )
