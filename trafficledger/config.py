"""
trafficledger Application Configuration
=======================================

PURPOSE:
    Pydantic-Settings based configuration for the trafficledger service.
    All settings can be overridden via environment variables (TRAFFICLEDGER_ prefix)
    or a local .env file.

SECTIONS:
    - Vendor credentials and HTTP behaviour (timeouts, retries, backoff)
    - Billing rate (credits charged per vendor-reported hit)
    - Reconciliation cadence, concurrency and per-sweep bound
    - Archive retention windows (archive -> delete-eligible -> purge)
"""

import logging
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional

logger = logging.getLogger(__name__)

_DEFAULT_SPARKTRAFFIC_URL = "https://v2.sparktraffic.com"


class Settings(BaseSettings):
    """Service settings. Field names map to TRAFFICLEDGER_<FIELD> env vars."""

    app_name: str = "trafficledger"
    debug: bool = False

    # Local state (SQLite default lives here unless DATABASE_URL is set)
    data_directory: str = "/data"
    log_directory: str = "logs"

    # Operator endpoints. When unset, admin routes are open (local/dev only).
    admin_api_key: Optional[str] = None

    # Vendor: SparkTraffic
    sparktraffic_api_key: Optional[str] = None
    sparktraffic_base_url: str = _DEFAULT_SPARKTRAFFIC_URL
    default_vendor: str = "sparktraffic"

    # Vendor HTTP behaviour
    vendor_timeout_s: float = 20.0
    vendor_retries: int = 3            # total attempts per call
    vendor_backoff_base_s: float = 1.5  # doubled per attempt, plus jitter

    # Billing
    # Credits charged per vendor-reported hit.
    credits_per_hit: int = 1
    # Throughput sent to the vendor on resume (0 means paused).
    resume_speed: int = 200

    # Reconciliation scheduling
    scheduler_enabled: bool = True
    reconcile_interval_s: int = 300
    reconcile_max_concurrency: int = 4
    reconcile_batch_limit: int = 500
    reconcile_campaign_timeout_s: float = 90.0

    # Archive sweep
    archive_sweep_interval_s: int = 6 * 3600
    archive_retention_days: int = 7   # archived -> delete-eligible
    purge_retention_days: int = 7     # delete-eligible -> purged

    # CORS
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    model_config = SettingsConfigDict(env_file=".env", env_prefix="TRAFFICLEDGER_")


settings = Settings()

if settings.credits_per_hit <= 0:
    logger.warning(
        "TRAFFICLEDGER_CREDITS_PER_HIT=%d is not positive; usage will never be billed",
        settings.credits_per_hit,
    )
