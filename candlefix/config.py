"""Application configuration loaded from environment variables."""

from decimal import Decimal
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from candlefix.models.candle import PRICE_TOLERANCE


class Settings(BaseSettings):
    """Application settings sourced from environment variables or .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Store
    scylla_host: str = "localhost"
    scylla_port: int = 9042
    scylla_keyspace: str = "trading"
    scylla_futures_keyspace: str = "futures"
    scylla_datacenter: str = "datacenter1"

    # Auth (optional -- only applied when both are set)
    scylla_username: str = ""
    scylla_password: str = ""

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Repair job
    repair_workers: int = 1
    repair_max_attempts: int = 3
    repair_conditional_writes: bool = True
    price_tolerance: Decimal = PRICE_TOLERANCE

    @field_validator("repair_workers", "repair_max_attempts")
    @classmethod
    def at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @property
    def contact_points(self) -> list[str]:
        """SCYLLA_HOST split on commas, blanks dropped."""
        return [h.strip() for h in self.scylla_host.split(",") if h.strip()]

    @property
    def has_credentials(self) -> bool:
        return bool(self.scylla_username and self.scylla_password)


@lru_cache
def get_settings() -> Settings:
    """Return cached singleton Settings instance."""
    return Settings()
