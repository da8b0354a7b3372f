"""
Configuration management for the agency dashboard refresh core
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Agency Dashboard Refresh Core"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_to_file: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./agency_dashboard.db"

    # Reporting
    report_timezone: str = "UTC"
    backlink_weeks: int = 4  # Weekly buckets shown on the backlinks panel
    backlink_lookback_days: int = 30  # Days of new/lost history fetched per refresh
    week_start_day: int = 0  # 0 = Monday ... 6 = Sunday
    top_pages_limit: int = 20

    # Refresh throttling
    page_metrics_cooldown_hours: float = 48.0
    backlinks_cooldown_hours: float = 48.0
    # Analytics has no long cooldown; this only keeps refreshes single-flight
    analytics_refresh_guard_minutes: float = 15.0
    analytics_max_age_hours: float = 24.0

    # Provider calls
    provider_timeout_seconds: float = 30.0
    probe_max_attempts: int = 3
    probe_base_delay_seconds: float = 1.0
    validation_min_interval_minutes: float = 10.0
    revoked_credential_ttl_minutes: float = 10.0

    # Google Analytics 4 (OAuth client used to refresh per-client tokens)
    ga4_client_id: Optional[str] = None
    ga4_client_secret: Optional[str] = None
    ga4_token_uri: str = "https://oauth2.googleapis.com/token"

    # DataForSEO
    dataforseo_base64: Optional[str] = None  # Fallback when a connection stores no login
    dataforseo_base_url: str = "https://api.dataforseo.com/v3"
    seo_location_code: int = 2840
    seo_language_name: str = "English"

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
