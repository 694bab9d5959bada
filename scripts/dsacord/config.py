"""
Configuration management for dump ingestion.
Handles environment variables, constants, and runtime parameters.
"""
import os
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


# Dump location
DEFAULT_DUMP_BASE_URL = "https://dsa-sor-data-dumps.s3.eu-central-1.amazonaws.com"
DEFAULT_PLATFORM = "discord-netherlands-bv"
FIRST_DUMP_DATE = date(2024, 8, 21)

# Composite identifier decoding
EPOCH_OFFSET_MS = 1420070400000
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

# CSV timestamp layout
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Persistence
CHUNK_SIZE = 1000
DECISIONS_TABLE = "decisions"

# Status codes that will never succeed on retry (the bucket answers 403 for missing keys)
PERMANENT_HTTP_STATUSES = frozenset({403, 404})


@dataclass
class IngestConfig:
    """Central configuration for dump ingestion."""

    # Database
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = ""
    db_password: str = ""
    db_name: str = "dsacord"
    database_url: Optional[str] = None
    db_connect_timeout: int = 30
    connection_pool_size: int = 5

    # Source
    dump_base_url: str = DEFAULT_DUMP_BASE_URL
    platform: str = DEFAULT_PLATFORM
    request_timeout: float = 120.0

    # Performance tuning
    workers: int = 1
    extract_workers: int = 4
    chunk_size: int = CHUNK_SIZE

    # Backoff
    backoff_initial_interval: float = 0.5
    backoff_multiplier: float = 1.5
    backoff_randomization: float = 0.5
    backoff_max_interval: float = 60.0
    backoff_max_elapsed: float = 15 * 60.0
    backoff_max_attempts: int = 12

    log_level: str = "INFO"

    def __post_init__(self):
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, got {self.chunk_size}")
        self.dump_base_url = self.dump_base_url.rstrip("/")

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None, **overrides) -> "IngestConfig":
        """
        Load configuration from a .env file and the process environment.

        Args:
            env_file: Explicit .env path (defaults to ./.env when present)
            overrides: Values that win over the environment (e.g. from CLI flags);
                None values are ignored

        Raises:
            ValueError: If database credentials are missing
        """
        env_path = env_file or Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)

        values = {
            "db_host": os.getenv("DB_HOST", "localhost"),
            "db_port": int(os.getenv("DB_PORT", "5432")),
            "db_user": os.getenv("DB_USER", ""),
            "db_password": os.getenv("DB_PASSWORD", ""),
            "db_name": os.getenv("DB_NAME", "dsacord"),
            "database_url": os.getenv("DATABASE_URL") or None,
            "workers": int(os.getenv("DSACORD_WORKERS", "1")),
            "dump_base_url": os.getenv("DSACORD_DUMP_BASE_URL", DEFAULT_DUMP_BASE_URL),
            "platform": os.getenv("DSACORD_PLATFORM", DEFAULT_PLATFORM),
            "log_level": os.getenv("DSACORD_LOG_LEVEL", "INFO"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})

        if not values["database_url"]:
            missing = []
            if not values["db_user"]:
                missing.append("DB_USER")
            if not values["db_password"]:
                missing.append("DB_PASSWORD")
            if missing:
                raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

        config = cls(**values)
        # Pool must cover every worker holding a chunk transaction
        config.connection_pool_size = max(config.connection_pool_size, config.workers + 1)
        return config

    def dsn(self) -> str:
        """Build libpq connection string."""
        if self.database_url:
            return self.database_url
        return (
            f"host={self.db_host} port={self.db_port} user={self.db_user} "
            f"password={self.db_password} dbname={self.db_name} sslmode=disable"
        )

    def dump_url(self, day: date) -> str:
        """URL of the full dump published for one calendar day."""
        return (
            f"{self.dump_base_url}/sor-{self.platform}-"
            f"{day.year:04d}-{day.month:02d}-{day.day:02d}-full.zip"
        )


# Status indicators
STATUS_OK = "ok"
STATUS_FAILED = "failed"

# Pipeline stages a URL can fail in
STAGE_FETCH = "fetch"
STAGE_EXTRACT = "extract"
STAGE_PERSIST = "persist"
STAGE_UNEXPECTED = "unexpected"
