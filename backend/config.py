"""
Student Dashboard - Configuration Management
Supports .env files and runtime configuration for the calendar engine,
fetch retries, and the external microservices the dashboard proxies to.
"""

import logging
from functools import lru_cache
from typing import Dict, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


# ============================================
# CALENDAR CONFIGURATION
# ============================================

class CalendarConfig(BaseSettings):
    """Calendar engine configuration (expansion, conflicts, rendering)."""

    timezone: str = Field(
        default="UTC",
        description="IANA timezone used to interpret naive timestamps"
    )
    week_starts_on: int = Field(
        default=6,
        ge=0,
        le=6,
        description="First day of the week (0=Monday ... 6=Sunday)"
    )
    expansion_horizon_days: int = Field(
        default=365,
        ge=1,
        le=3650,
        description="How far ahead recurring events are expanded by default"
    )
    max_occurrences_per_rule: int = Field(
        default=500,
        ge=1,
        le=10000,
        description="Upper bound on instances generated from a single rule"
    )
    max_events_per_cell: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Events shown per month-grid cell before collapsing into 'N more'"
    )
    require_free_window: bool = Field(
        default=True,
        description="Drop assignment placements that fall outside every free-time window"
    )

    model_config = {
        "env_prefix": "CALENDAR_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


# ============================================
# FETCH CONFIGURATION
# ============================================

class FetchConfig(BaseSettings):
    """Retry behaviour for the three parallel event reads."""

    retry_count: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries per read after the first failed attempt"
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=30.0,
        description="Initial backoff delay, doubled on every retry"
    )
    retry_max_delay_seconds: float = Field(
        default=10.0,
        ge=0.0,
        le=120.0,
        description="Cap on a single backoff delay"
    )

    model_config = {
        "env_prefix": "FETCH_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# ============================================
# EXTERNAL SERVICES CONFIGURATION
# ============================================

class ServicesConfig(BaseSettings):
    """Base URLs of the external microservices (server-side only)."""

    email_service_url: str = Field(default="", description="Email polling service")
    canvas_service_url: str = Field(default="", description="Canvas LMS agent service")
    calendar_service_url: str = Field(default="", description="AI calendar scheduler")
    vector_db_service_url: str = Field(default="", description="Vector store service")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }

    def missing(self) -> list[str]:
        """Names of the service URLs that are not configured."""
        return [
            name.upper()
            for name in ("email_service_url", "canvas_service_url",
                         "calendar_service_url", "vector_db_service_url")
            if not getattr(self, name)
        ]


# ============================================
# CACHED CONFIGURATION INSTANCES
# ============================================

@lru_cache()
def get_calendar_config() -> CalendarConfig:
    """Get cached calendar configuration instance."""
    return CalendarConfig()


@lru_cache()
def get_fetch_config() -> FetchConfig:
    """Get cached fetch configuration instance."""
    return FetchConfig()


@lru_cache()
def get_services_config() -> ServicesConfig:
    """Get cached services configuration instance."""
    config = ServicesConfig()
    for name in config.missing():
        logger.warning(f"Missing server environment variable: {name}")
    return config


def reload_config():
    """Clear configuration cache and reload from environment."""
    get_calendar_config.cache_clear()
    get_fetch_config.cache_clear()
    get_services_config.cache_clear()


# ============================================
# CONFIGURATION SUMMARY
# ============================================

def get_config_summary() -> Dict[str, Any]:
    """
    Get a summary of all configuration values.
    Useful for debugging and settings display.
    """
    calendar = get_calendar_config()
    fetch = get_fetch_config()
    services = get_services_config()

    return {
        "calendar": {
            "timezone": calendar.timezone,
            "week_starts_on": calendar.week_starts_on,
            "expansion_horizon_days": calendar.expansion_horizon_days,
            "max_occurrences_per_rule": calendar.max_occurrences_per_rule,
            "max_events_per_cell": calendar.max_events_per_cell,
            "require_free_window": calendar.require_free_window,
        },
        "fetch": {
            "retry_count": fetch.retry_count,
            "base_delay": fetch.retry_base_delay_seconds,
            "max_delay": fetch.retry_max_delay_seconds,
        },
        "services": {
            "email": bool(services.email_service_url),
            "canvas": bool(services.canvas_service_url),
            "calendar": bool(services.calendar_service_url),
            "vector_db": bool(services.vector_db_service_url),
        },
    }
