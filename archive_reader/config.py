"""Archive reader configuration with environment variable support."""

import os
from datetime import datetime
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from archive_reader.domain.models import DownloadLayout, OverwriteMode


class Settings(BaseSettings):
    """Archive reader configuration loaded from environment variables.

    Loads from environment (ARCHIVE_*), .env file, or defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="ARCHIVE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Archive services
    metadata_server_url: str = "https://metadata.my.emsl.pnl.gov"
    file_server_url: str = "https://files.my.emsl.pnl.gov"
    cart_server_url: str = "https://cart.my.emsl.pnl.gov"

    # Network behaviour
    metadata_timeout: int = 300
    download_timeout: int = 100  # Starting timeout, grows on each retry
    max_attempts: int = 5
    retry_delay: float = 2.0

    # Resolution
    cache_ttl_minutes: float = 5
    include_all_revisions: bool = False
    dms_database: Path | None = None  # SQLite file with the dataset_export table

    # Files created by a faulty ingest in this window are zero-byte artifacts
    corrupt_window_start: datetime | None = datetime(2023, 10, 31, 22, 13, 0)
    corrupt_window_end: datetime | None = datetime(2023, 12, 19, 22, 0, 0)

    # Downloads
    download_dir: Path = Path(".")
    download_layout: DownloadLayout = DownloadLayout.SINGLE_DATASET
    overwrite_mode: OverwriteMode = OverwriteMode.IF_CHANGED
    long_path_prefix: bool = os.name == "nt"
    max_path_length: int = 255
    cart_fallback: bool = False  # Bundle leftover files through the cart server
    cart_max_minutes: float = 30

    @field_validator("metadata_server_url", "file_server_url", "cart_server_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs so paths can be appended with a single slash."""
        return v.rstrip("/")

    @field_validator("corrupt_window_start", "corrupt_window_end", "dms_database", mode="before")
    @classmethod
    def parse_null(cls, v):
        """Convert 'null'/'none'/'' strings to None."""
        if isinstance(v, str) and v.lower() in ("null", "none", ""):
            return None
        return v

    @field_validator("max_attempts", mode="after")
    @classmethod
    def at_least_one_attempt(cls, v: int) -> int:
        """Always make at least one attempt."""
        return max(1, v)

    @field_validator("download_dir", mode="after")
    @classmethod
    def create_dirs(cls, v: Path) -> Path:
        """Create the download directory if it doesn't exist."""
        v.mkdir(parents=True, exist_ok=True)
        return v.resolve()
