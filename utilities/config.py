"""
Configuration management using environment variables.
Handles all monitor settings with proper validation and defaults.
"""

from typing import Optional
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from crawler.models import FetchConfig, Significance
from enrichment.models import AnnotatorConfig
from scheduler.models import AlertConfig, ReportConfig, SchedulerConfig


class MonitorConfig(BaseSettings):
    """
    Configuration class for the page monitor.
    Uses pydantic BaseSettings for environment variable management.
    """

    # MongoDB Configuration
    mongodb_url: str = Field(default="mongodb://localhost:27017")
    mongodb_database: str = Field(default="page_monitor")

    # Fetcher Configuration
    request_timeout: int = Field(default=30)
    max_content_bytes: int = Field(default=2 * 1024 * 1024)
    retry_attempts: int = Field(default=2)
    retry_delay: float = Field(default=1.0)
    rate_limit_per_second: float = Field(default=2.0)
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        )
    )

    # Crawl Scheduling
    check_interval_hours: float = Field(default=24.0)
    crawl_delay_seconds: float = Field(default=2.0)
    run_timeout_seconds: Optional[float] = Field(default=None)
    max_snapshot_chars: int = Field(default=100_000)
    fingerprint_algorithm: str = Field(default="md5")
    diff_min_fragment_length: int = Field(default=10)
    diff_max_items: int = Field(default=10)

    # AI Enrichment
    gemini_api_key: Optional[str] = Field(default=None)
    gemini_model: str = Field(default="gemini-1.5-flash")
    gemini_api_base: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    ai_temperature: float = Field(default=0.3)
    ai_max_output_tokens: int = Field(default=500)
    ai_timeout: int = Field(default=30)
    annotation_delay_seconds: float = Field(default=1.0)
    annotation_excerpt_chars: int = Field(default=2000)

    # Alerting and Reports
    alerting_enabled: bool = Field(default=True)
    min_significance_for_alert: Significance = Field(default=Significance.NOTABLE)
    max_alerts_per_hour: int = Field(default=10)
    reports_dir: str = Field(default="reports")
    digest_days: int = Field(default=7)

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    log_file: Optional[str] = Field(default="logs/monitor.log")

    # Daemon Scheduling
    schedule_hour: int = Field(default=2)
    schedule_minute: int = Field(default=0)
    timezone: str = Field(default="UTC")

    # Development/Testing
    debug: bool = Field(default=False)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra fields from .env
    )

    @field_validator('request_timeout')
    @classmethod
    def validate_timeout(cls, v):
        """Ensure timeout is reasonable."""
        if v < 5 or v > 300:
            raise ValueError('request_timeout must be between 5 and 300 seconds')
        return v

    @field_validator('retry_attempts')
    @classmethod
    def validate_retry_attempts(cls, v):
        """Ensure retry attempts is reasonable."""
        if v < 0 or v > 10:
            raise ValueError('retry_attempts must be between 0 and 10')
        return v

    @field_validator('rate_limit_per_second')
    @classmethod
    def validate_rate_limit(cls, v):
        """Ensure rate limit is reasonable."""
        if v < 0.1 or v > 10:
            raise ValueError('rate_limit_per_second must be between 0.1 and 10')
        return v

    @field_validator('crawl_delay_seconds', 'annotation_delay_seconds')
    @classmethod
    def validate_delay(cls, v):
        """Pacing delays cannot be negative."""
        if v < 0:
            raise ValueError('pacing delays must be zero or positive')
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of: {valid_levels}')
        return v.upper()

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ['json', 'console']
        if v.lower() not in valid_formats:
            raise ValueError(f'log_format must be one of: {valid_formats}')
        return v.lower()

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path as Path object."""
        if self.log_file:
            return Path(self.log_file)
        return None

    def get_headers(self) -> dict:
        """Get default headers for HTTP requests."""
        return {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }

    def fetch_config(self) -> FetchConfig:
        """Build the fetcher configuration."""
        return FetchConfig(
            timeout=self.request_timeout,
            max_content_bytes=self.max_content_bytes,
            retry_attempts=self.retry_attempts,
            retry_delay=self.retry_delay,
            rate_limit_per_second=self.rate_limit_per_second,
            headers=self.get_headers(),
        )

    def scheduler_config(self) -> SchedulerConfig:
        """Build the crawl scheduler configuration."""
        return SchedulerConfig(
            check_interval_hours=self.check_interval_hours,
            crawl_delay_seconds=self.crawl_delay_seconds,
            run_timeout_seconds=self.run_timeout_seconds,
            max_snapshot_chars=self.max_snapshot_chars,
            fingerprint_algorithm=self.fingerprint_algorithm,
            diff_min_fragment_length=self.diff_min_fragment_length,
            diff_max_items=self.diff_max_items,
            schedule_hour=self.schedule_hour,
            schedule_minute=self.schedule_minute,
            timezone=self.timezone,
        )

    def annotator_config(self) -> AnnotatorConfig:
        """Build the AI annotator configuration."""
        return AnnotatorConfig(
            api_key=self.gemini_api_key,
            model=self.gemini_model,
            api_base=self.gemini_api_base,
            temperature=self.ai_temperature,
            max_output_tokens=self.ai_max_output_tokens,
            timeout=self.ai_timeout,
            delay_seconds=self.annotation_delay_seconds,
            excerpt_chars=self.annotation_excerpt_chars,
        )

    def alert_config(self) -> AlertConfig:
        """Build the alerting configuration."""
        return AlertConfig(
            enabled=self.alerting_enabled,
            min_significance=self.min_significance_for_alert,
            max_alerts_per_hour=self.max_alerts_per_hour,
        )

    def report_config(self) -> ReportConfig:
        """Build the digest report configuration."""
        return ReportConfig(reports_dir=self.reports_dir, digest_days=self.digest_days)


# Global configuration instance, read by entry points only
config = MonitorConfig()
