"""MetricSync — Central Configuration via Pydantic Settings."""

import os
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Credential Vault ──
    encryption_secret: str = ""
    encryption_salt: str = "metricsync-credential-salt"
    kdf_iterations: int = 200_000

    # ── Storage ──
    storage_backend: str = "json"  # json | sql | memory
    data_dir: str = ".data"
    database_url: str = ""

    # ── Metric Store ──
    metric_flush_interval_seconds: float = 30.0
    read_repair_delay_seconds: float = 0.25

    # ── Sync ──
    sync_timeout_seconds: float = 120.0
    http_timeout_seconds: float = 30.0
    http_max_retries: int = 3

    # ── Provider APIs ──
    stripe_base_url: str = "https://api.stripe.com/v1"
    sheets_base_url: str = "https://sheets.googleapis.com/v4"
    analytics_base_url: str = "https://analyticsdata.googleapis.com/v1beta"
    airtable_base_url: str = "https://api.airtable.com/v0"
    notion_base_url: str = "https://api.notion.com/v1"
    notion_api_version: str = "2022-06-28"

    # ── App ──
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    sync_check_interval_minutes: int = 15

    # ── Uploads ──
    csv_max_bytes: int = 5 * 1024 * 1024

    @property
    def effective_database_url(self) -> str:
        """Return the configured database URL, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/metricsync.db"
        return "sqlite:///./metricsync.db"

    @property
    def effective_data_dir(self) -> str:
        if os.environ.get("VERCEL"):
            return "/tmp/metricsync-data"
        return self.data_dir

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
