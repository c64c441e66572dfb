"""
Configuration management for FleetTrack.

Loads settings from environment variables with sensible defaults.
All configuration is centralized here to avoid magic numbers scattered
throughout the codebase.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class DatabaseConfig:
    """Database and connection pool configuration."""
    url: str = os.getenv('DATABASE_URL', 'sqlite:///fleettrack.db')

    # Small pool; the cache absorbs most read traffic
    pool_size: int = int(os.getenv('DB_POOL_SIZE', '10'))
    max_overflow: int = int(os.getenv('DB_MAX_OVERFLOW', '5'))

    # Both waits are bounded so a saturated pool fails fast
    pool_timeout: float = float(os.getenv('DB_POOL_TIMEOUT', '15'))
    statement_timeout_ms: int = int(os.getenv('DB_STATEMENT_TIMEOUT_MS', '20000'))

    # Transient-error retry policy
    retry_attempts: int = int(os.getenv('DB_RETRY_ATTEMPTS', '2'))
    retry_backoff_seconds: float = float(os.getenv('DB_RETRY_BACKOFF', '0.1'))

    slow_query_ms: int = 100

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith('sqlite')


@dataclass(frozen=True)
class IngestionConfig:
    """Location admission settings."""
    min_interval_seconds: float = float(os.getenv('MIN_UPDATE_INTERVAL_SECONDS', '8'))
    batch_max: int = 50
    default_driver_label: str = 'Unknown'


@dataclass(frozen=True)
class CacheConfig:
    """In-memory freshness cache TTLs (seconds)."""
    location_ttl: float = float(os.getenv('CACHE_LOCATION_TTL', '15'))
    active_list_ttl: float = float(os.getenv('CACHE_ACTIVE_LIST_TTL', '30'))
    vehicle_ttl: float = float(os.getenv('CACHE_VEHICLE_TTL', '60'))


@dataclass(frozen=True)
class ViewConfig:
    """Read-side defaults."""
    recency_minutes: int = int(os.getenv('ACTIVE_RECENCY_MINUTES', '30'))
    history_hours: int = 24
    history_max_hours: int = 168  # 1 week
    history_max_points: int = 100
    history_points_limit: int = 1000
    recent_minutes: int = 30
    recent_max_minutes: int = 1440
    recent_max_per_vehicle: int = 10
    recent_per_vehicle_limit: int = 100
    sample_list_limit: int = 50
    sample_list_max: int = 500


@dataclass(frozen=True)
class RetentionConfig:
    """Data retention policy."""
    days: int = int(os.getenv('RETENTION_DAYS', '7'))
    keep_every_nth: int = int(os.getenv('RETENTION_KEEP_EVERY', '10'))
    inactivity_hours: float = float(os.getenv('INACTIVITY_HOURS', '2'))
    sweep_interval_minutes: int = int(os.getenv('SWEEP_INTERVAL_MINUTES', '0'))  # 0 = manual only


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    views: ViewConfig = field(default_factory=ViewConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)

    # Flask settings
    secret_key: str = 'dev-key-change-in-prod'
    debug: bool = False


def load_config() -> AppConfig:
    """Load and validate all configuration."""
    return AppConfig(
        database=DatabaseConfig(),
        ingestion=IngestionConfig(),
        cache=CacheConfig(),
        views=ViewConfig(),
        retention=RetentionConfig(),
        secret_key=os.getenv('SECRET_KEY', 'dev-key-change-in-prod'),
        debug=os.getenv('FLASK_DEBUG', '0') == '1',
    )


# Singleton instance
config = load_config()
