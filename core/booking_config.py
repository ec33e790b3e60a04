"""
Business configuration for booking rules, pricing constants and advisories.
Timezone-aware configuration, built from application settings.
"""

from dataclasses import dataclass, field
from datetime import time
from typing import Optional
import pytz

from core.config import settings
from core.utils_datetime import DEFAULT_START_TIME, DEFAULT_END_TIME


class ConfigurationError(ValueError):
    """Required booking configuration is missing or out of range."""


@dataclass(frozen=True)
class BookingRules:
    """Booking rules and constraints consumed by the validator."""
    # Notice settings
    minimum_notice_hours: int = 48  # Shorter notice is flagged, not refused
    maximum_advance_days: int = 365  # Further ahead is flagged, not refused

    # Pricing settings
    overnight_surcharge: float = 20.0
    deposit_fraction: float = 0.30

    # Window used for date-only bookings and calendar all-day events
    default_start_time: time = DEFAULT_START_TIME
    default_end_time: time = DEFAULT_END_TIME

    # Duration settings (single-day bookings)
    min_duration_hours: float = 2
    max_duration_hours: float = 12

    # Advisory thresholds
    early_start_hour: int = 8  # Starts before this hour
    late_end_hour: int = 20  # Ends after this hour
    long_duration_hours: float = 8
    low_deposit_ratio: float = 0.2

    # Required gap between two bookings of one castle
    setup_buffer_minutes: int = 0

    # Alternative slot search
    suggestion_window_days: int = 14
    max_suggestions: int = 3

    def __post_init__(self):
        """Reject configurations the validator cannot work with."""
        if self.minimum_notice_hours is None or self.minimum_notice_hours < 0:
            raise ConfigurationError("minimum_notice_hours must be zero or more")
        if self.maximum_advance_days is None or self.maximum_advance_days < 1:
            raise ConfigurationError("maximum_advance_days must be at least 1")
        if self.overnight_surcharge is None or self.overnight_surcharge < 0:
            raise ConfigurationError("overnight_surcharge must be zero or more")
        if self.deposit_fraction is None or not 0 < self.deposit_fraction <= 1:
            raise ConfigurationError("deposit_fraction must be within (0, 1]")
        if self.min_duration_hours > self.max_duration_hours:
            raise ConfigurationError("min_duration_hours cannot exceed max_duration_hours")
        if self.setup_buffer_minutes < 0:
            raise ConfigurationError("setup_buffer_minutes must be zero or more")
        if self.suggestion_window_days < 0 or self.max_suggestions < 0:
            raise ConfigurationError("suggestion settings must be zero or more")


@dataclass
class BusinessConfig:
    """Complete business configuration."""

    name: str = "T&S Bouncy Castle Hire"
    timezone: str = "Europe/London"
    booking_rules: BookingRules = field(default_factory=BookingRules)

    def __post_init__(self):
        if self.timezone not in pytz.all_timezones_set:
            raise ConfigurationError(f"Unknown timezone: {self.timezone}")

    @property
    def tz(self) -> pytz.BaseTzInfo:
        """Get the timezone object."""
        return pytz.timezone(self.timezone)


def get_default_business_config() -> BusinessConfig:
    """Build the business configuration from application settings."""
    booking_rules = BookingRules(
        minimum_notice_hours=settings.minimum_notice_hours,
        maximum_advance_days=settings.maximum_advance_days,
        overnight_surcharge=settings.overnight_surcharge,
        deposit_fraction=settings.deposit_fraction,
        setup_buffer_minutes=settings.setup_buffer_minutes,
        suggestion_window_days=settings.suggestion_window_days,
        max_suggestions=settings.max_suggestions,
    )

    return BusinessConfig(
        name=settings.business_name,
        timezone=settings.business_timezone,
        booking_rules=booking_rules,
    )


# Singleton instance
_business_config_instance: Optional[BusinessConfig] = None


def get_business_config() -> BusinessConfig:
    """Get the business configuration singleton."""
    global _business_config_instance
    if _business_config_instance is None:
        _business_config_instance = get_default_business_config()
    return _business_config_instance
