"""Configuration for brewsync."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from brewsync.sync.models import ConflictStrategy


class Settings(BaseSettings):
    """Settings loaded from the environment and an optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # S3 connection
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_region: str = "us-east-1"
    s3_bucket: str = "brewsync"
    s3_prefix: str = "brewsync"
    s3_endpoint_url: str | None = None

    # Local state
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".brewsync")

    log_level: str = "INFO"

    # Sync behaviour
    conflict_strategy: ConflictStrategy = ConflictStrategy.MANUAL
    max_delete_percent: float = Field(default=0.3, ge=0.0, le=1.0)
    max_delete_count: int = Field(default=100, ge=0)
    strict_first_sync: bool = False
    max_concurrency: int = Field(default=1, ge=1)

    # Retry policy for object-store calls
    retry_max_attempts: int = Field(default=1, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0.0)
    retry_max_delay: float = Field(default=30.0, ge=0.0)

    @property
    def store_path(self) -> Path:
        """Location of the local key-value store document."""
        return self.data_dir / "store.json"
