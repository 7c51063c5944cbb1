"""Application settings using pydantic-settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="XAPI_RELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Deadlines in seconds; None keeps the library/OS defaults (no deadline).
    request_timeout: float | None = Field(default=None, gt=0)
    tunnel_timeout: float | None = Field(default=None, gt=0)

    # Upper bound on inbound connections served at the same time.
    max_connections: int = Field(default=64, ge=1)

    trace_header: str = "X-B3-Flags"
    redacted_header: str = "x-transaction-id"
    crc_token_param: str = "crc_token"

    log_level: str = "WARNING"


# Global settings instance
settings = Settings()
