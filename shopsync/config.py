"""
Configuration management for ShopSync
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "ShopSync Order Orchestration"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_to_file: bool = False
    log_dir: str = "logs"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./shopsync.db"

    # Security
    secret_key: str = "change-me-in-production"
    # Fernet key for marketplace credentials. Derived from secret_key when empty.
    credential_encryption_key: str = ""

    # Marketplace sync
    sync_platform_timeout_seconds: float = 30.0
    sync_max_concurrency: int = 4
    sync_interval_minutes: int = 60
    sync_lookback_days: int = 7
    sync_scheduler_enabled: bool = True

    # Connectors
    connector_retry_attempts: int = 3
    connector_retry_base_delay: float = 1.0  # seconds
    connector_retry_max_delay: float = 30.0  # seconds
    connector_page_size: int = 100
    shopify_api_version: str = "2024-01"
    amazon_default_region: str = "na"

    # Caches (seconds)
    customer_mapping_cache_ttl: int = 3600
    customer_detail_cache_ttl: int = 300
    customer_email_cache_ttl: int = 1800
    cache_sweep_interval_seconds: int = 60
    metrics_cache_ttl: int = 300

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
