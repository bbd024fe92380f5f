"""Configuration for the synchronization engine."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncConfig(BaseSettings):
    """Concurrency, backpressure and backoff policy for the sync engine."""

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        case_sensitive=False,
        extra="ignore",
    )

    global_concurrency: int = Field(
        default=8,
        ge=1,
        description="Maximum simultaneous adapter fetches across all kinds",
    )
    background_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Delay between background staleness scans",
    )
    rate_limit_threshold: int = Field(
        default=50,
        ge=0,
        description="Remaining-call count at or below which non-forced syncs are skipped",
    )
    backoff_base_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Base delay for failure backoff (doubled per consecutive failure)",
    )
    backoff_max_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="Upper bound on failure backoff delay",
    )
    default_rate_reset_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Assumed budget reset horizon when an adapter reports none",
    )
