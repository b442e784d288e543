"""PostPulse — Central Configuration via Pydantic Settings."""

import os
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Database ──
    database_url: str = ""

    # ── Aggregation ──
    supported_sns_kind: str = "instagram"
    default_timezone: str = "Asia/Tokyo"
    backfill_batch_size: int = 400  # Hard-capped at 400 writes per commit
    summary_schema_version: str = "1.0.0"

    # ── App ──
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    reconcile_hour: int = 3  # Nightly reconcile at 3 AM UTC

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/postpulse.db"
        return "sqlite:///./postpulse.db"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
