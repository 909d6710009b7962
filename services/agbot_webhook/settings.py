from __future__ import annotations

from dataclasses import dataclass, field

from shared.config import env_float, env_int, optional_env, require_env


@dataclass(frozen=True)
class AlertThresholds:
    battery_warning_v: float = 3.3
    battery_critical_v: float = 3.2
    fuel_warning_days: int = 7
    fuel_critical_days: int = 3
    fuel_warning_percent: float = 15.0
    fuel_critical_percent: float = 10.0


@dataclass(frozen=True)
class Settings:
    webhook_secret: str
    database_url: str
    pool_min_size: int = 1
    pool_max_size: int = 5
    vendor_utc_offset_hours: float = 8.0
    thresholds: AlertThresholds = field(default_factory=AlertThresholds)


def _database_url() -> str:
    url = optional_env("DATABASE_URL").strip()
    if url:
        return url
    host = optional_env("PG_HOST", "localhost")
    port = optional_env("PG_PORT", "5432")
    db = optional_env("PG_DB", "agbot")
    user = optional_env("PG_USER", "agbot")
    password = require_env("PG_PASS")
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


def load_settings() -> Settings:
    """Build Settings from the environment. Raises RuntimeError on missing secrets."""
    return Settings(
        webhook_secret=require_env("GASBOT_WEBHOOK_SECRET"),
        database_url=_database_url(),
        pool_min_size=env_int("PG_POOL_MIN", 1),
        pool_max_size=env_int("PG_POOL_MAX", 5),
        vendor_utc_offset_hours=env_float("VENDOR_UTC_OFFSET_HOURS", 8.0),
        thresholds=AlertThresholds(
            battery_warning_v=env_float("LOW_BATTERY_WARNING_V", 3.3),
            battery_critical_v=env_float("LOW_BATTERY_CRITICAL_V", 3.2),
            fuel_warning_days=env_int("LOW_FUEL_WARNING_DAYS", 7),
            fuel_critical_days=env_int("LOW_FUEL_CRITICAL_DAYS", 3),
            fuel_warning_percent=env_float("LOW_FUEL_WARNING_PERCENT", 15.0),
            fuel_critical_percent=env_float("LOW_FUEL_CRITICAL_PERCENT", 10.0),
        ),
    )
