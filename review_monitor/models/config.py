"""Configuration management for the review monitor."""

import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


RICH_VIOLATION_TYPES = [
    "Pricing/Availability Keywords",
    "Price Manipulation",
    "Spam Content",
    "Promotional Content",
    "Fake Review",
    "Inauthentic Review",
    "Policy Violation",
    "Terms of Service Violation",
]


class MonitorConfig(BaseModel):
    """Main configuration for scraping, queueing and violation scanning."""

    # Scraper provider (Apify)
    apify_token: Optional[str] = Field(default=None, description="Apify API bearer token")
    apify_base_url: str = Field(default="https://api.apify.com/v2", description="Apify API base URL")
    product_actor_id: str = Field(default="junglee~amazon-crawler", description="Actor for product pages")
    review_actor_id: str = Field(default="junglee~amazon-reviews-scraper", description="Actor for reviews")
    amazon_domain: str = Field(default="amazon.com", description="Marketplace domain for product URLs")
    max_reviews: int = Field(default=500, description="Review limit per review run")
    review_sort: str = Field(default="recent", description="Review sort order")
    proxy_country: str = Field(default="AUTO_SELECT_PROXY_COUNTRY", description="Provider proxy country")
    review_run_sync: bool = Field(default=False, description="Use run-sync for review scrapes")

    # Task monitoring
    poll_interval: float = Field(default=5.0, description="Seconds between provider status polls")
    poll_max_attempts: int = Field(default=360, description="Maximum status polls per task")
    poll_max_duration: float = Field(default=1800.0, description="Maximum seconds to monitor a task")
    chain_review_scrape: bool = Field(default=True, description="Start a review scrape after product ingestion")

    # Provider retry policy
    provider_max_attempts: int = Field(default=3, description="Attempts per provider request")
    provider_base_delay: float = Field(default=1.0, description="Base delay for provider backoff")
    retryable_status_codes: List[int] = Field(
        default=[429, 500, 502, 503, 504],
        description="Provider HTTP status codes that trigger retries"
    )

    # HTTP timeouts
    connect_timeout: float = Field(default=5.0, description="HTTP connect timeout in seconds")
    read_timeout: float = Field(default=60.0, description="HTTP read timeout in seconds")

    # Violation classifier
    classifier_webhook_url: Optional[str] = Field(default=None, description="Classifier webhook URL")
    classifier_max_attempts: int = Field(default=3, description="Attempts per classifier request")
    classifier_base_delay: float = Field(default=1.0, description="Base delay for classifier backoff")
    scan_mode: str = Field(default="batched", description="'batched' or 'single'")
    scan_batch_size: int = Field(default=5, description="Reviews per batch in batched mode")
    scan_batch_delay: float = Field(default=0.5, description="Seconds between batches")
    scan_timeout: float = Field(default=900.0, description="Wall-clock budget for a single-shot scan")
    scan_progress_window: float = Field(default=600.0, description="Seconds for simulated progress to reach 95%")
    violation_taxonomy: str = Field(default="rich", description="'rich' or 'collapsed'")
    violation_types: List[str] = Field(default=RICH_VIOLATION_TYPES, description="Allowed types in rich mode")
    collapsed_violation_type: str = Field(default="Content Violation", description="Type literal in collapsed mode")

    # Queue manager
    max_concurrent: int = Field(default=3, description="Queue items processed at once")
    max_retries: int = Field(default=3, description="Attempts before an item is never re-selected")
    queue_tick_interval: float = Field(default=1.0, description="Seconds between scheduling ticks")
    queue_poll_interval: float = Field(default=2.0, description="Seconds between completion checks")
    queue_estimated_duration: float = Field(default=30.0, description="Assumed scrape duration for progress")
    queue_item_timeout: float = Field(default=1800.0, description="Maximum seconds per queue item")
    queue_completed_retention: float = Field(default=5.0, description="Seconds before completed items are removed")

    # Storage
    database_url: str = Field(default="sqlite+aiosqlite:///./review_monitor.db", description="Database URL")
    database_echo: bool = Field(default=False, description="Echo SQL statements")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Output
    output_directory: str = Field(default="out", description="Output directory for reports")
    output_filename: str = Field(default="scan_report.json", description="Scan report filename")

    @field_validator(
        'poll_interval', 'poll_max_duration', 'queue_tick_interval',
        'queue_poll_interval', 'queue_estimated_duration', 'queue_item_timeout',
        'scan_timeout', 'scan_progress_window'
    )
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        """Validate intervals and budgets are positive."""
        if v <= 0:
            raise ValueError(f"interval must be positive, got: {v}")
        return v

    @field_validator(
        'max_concurrent', 'max_retries', 'poll_max_attempts',
        'provider_max_attempts', 'classifier_max_attempts', 'scan_batch_size'
    )
    @classmethod
    def validate_positive_count(cls, v: int) -> int:
        """Validate counts are positive."""
        if v <= 0:
            raise ValueError(f"count must be positive, got: {v}")
        return v

    @field_validator('scan_mode')
    @classmethod
    def validate_scan_mode(cls, v: str) -> str:
        if v not in ("batched", "single"):
            raise ValueError(f"scan_mode must be 'batched' or 'single', got: {v}")
        return v

    @field_validator('violation_taxonomy')
    @classmethod
    def validate_taxonomy(cls, v: str) -> str:
        if v not in ("rich", "collapsed"):
            raise ValueError(f"violation_taxonomy must be 'rich' or 'collapsed', got: {v}")
        return v

    @field_validator('classifier_webhook_url')
    @classmethod
    def validate_webhook_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate URL format."""
        if v is not None and not v.startswith(('http://', 'https://')):
            raise ValueError(f"URL must start with http:// or https://, got: {v}")
        return v

    @property
    def output_path(self) -> Path:
        """Get full output file path."""
        return Path(self.output_directory) / self.output_filename

    @property
    def async_database_url(self) -> str:
        """Database URL with an async driver selected."""
        url = self.database_url
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://") and "+aiosqlite" not in url:
            return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    # Environment variable overrides
    @classmethod
    def from_env(cls) -> "MonitorConfig":
        """Create configuration with environment variable overrides."""
        config = cls()

        env_mappings = {
            "APIFY_TOKEN": "apify_token",
            "N8N_WEBHOOK_URL": "classifier_webhook_url",
            "CLASSIFIER_WEBHOOK_URL": "classifier_webhook_url",
            "DATABASE_URL": "database_url",
            "MONITOR_LOG_LEVEL": "log_level",
            "MONITOR_POLL_INTERVAL": "poll_interval",
            "MONITOR_MAX_CONCURRENT": "max_concurrent",
            "MONITOR_MAX_RETRIES": "max_retries",
            "MONITOR_SCAN_MODE": "scan_mode",
            "MONITOR_SCAN_BATCH_SIZE": "scan_batch_size",
            "MONITOR_SCAN_TIMEOUT": "scan_timeout",
            "MONITOR_VIOLATION_TAXONOMY": "violation_taxonomy",
        }

        for env_var, field_name in env_mappings.items():
            if env_var in os.environ:
                value = os.environ[env_var]
                field_info = cls.model_fields[field_name]
                if field_info.annotation == int:
                    setattr(config, field_name, int(value))
                elif field_info.annotation == float:
                    setattr(config, field_name, float(value))
                else:
                    setattr(config, field_name, value)

        return config


class ConfigManager:
    """Manages configuration loading with override precedence."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = config_file or Path("config/config.yaml")
        self._config: Optional[MonitorConfig] = None

    def load_config(self, cli_overrides: Optional[Dict] = None) -> MonitorConfig:
        """
        Load configuration with override precedence: CLI > ENV > YAML.

        Args:
            cli_overrides: Optional dictionary of CLI flag overrides

        Returns:
            Fully merged MonitorConfig instance

        Raises:
            ValueError: If configuration validation fails
        """
        config_dict = {}

        if self.config_file.exists():
            with open(self.config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
                if yaml_config:
                    config_dict.update(yaml_config)

        base_config = MonitorConfig(**config_dict)
        env_config = MonitorConfig.from_env()

        merged_dict = base_config.model_dump()
        env_dict = env_config.model_dump()

        # Only override with env values that differ from defaults
        default_dict = MonitorConfig().model_dump()
        for key, value in env_dict.items():
            if value != default_dict[key]:
                merged_dict[key] = value

        if cli_overrides:
            cli_overrides = {k: v for k, v in cli_overrides.items() if v is not None}
            merged_dict.update(cli_overrides)

        self._config = MonitorConfig(**merged_dict)
        return self._config

    @property
    def config(self) -> MonitorConfig:
        """Get the loaded configuration."""
        if self._config is None:
            self._config = self.load_config()
        return self._config
