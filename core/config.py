"""
Application settings and configuration management using Pydantic Settings.
"""
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application Settings
    app_name: str = Field(default="Castle Hire Bookings", description="Application name")
    app_env: str = Field(default="development", description="Environment (development, staging, production)")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    api_v1_prefix: str = Field(default="/api/v1", description="Prefix for versioned API routes")

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./castle_bookings.db",
        description="Database connection URL"
    )

    # Business Configuration
    business_name: str = Field(default="T&S Bouncy Castle Hire", description="Business name")
    business_timezone: str = Field(default="Europe/London", description="Business timezone")
    minimum_notice_hours: int = Field(default=48, ge=0, description="Bookings inside this window get a short-notice warning")
    maximum_advance_days: int = Field(default=365, ge=1, description="Bookings beyond this window get a far-future warning")
    overnight_surcharge: float = Field(default=20.0, ge=0, description="Flat charge for keeping a castle overnight")
    deposit_fraction: float = Field(default=0.30, gt=0, le=1, description="Deposit as a fraction of the total price")
    setup_buffer_minutes: int = Field(default=0, ge=0, description="Setup/cleanup gap required between bookings of one castle")
    suggestion_window_days: int = Field(default=14, ge=1, description="Days searched either side for alternative slots")
    max_suggestions: int = Field(default=3, ge=1, description="Maximum alternative slots returned")

    # Google Calendar Configuration
    google_calendar_id: str = Field(default="primary", description="Calendar holding booking events")
    google_calendar_api_url: str = Field(
        default="https://www.googleapis.com/calendar/v3",
        description="Google Calendar REST base URL"
    )
    google_calendar_access_token: str = Field(default="", description="OAuth bearer token for the calendar")
    google_calendar_timeout_seconds: float = Field(default=10.0, gt=0, description="Calendar request timeout")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the allowed values."""
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed_levels:
            raise ValueError(f"log_level must be one of {allowed_levels}")
        return v_upper

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Validate environment is one of the allowed values."""
        allowed_envs = ["development", "staging", "production"]
        v_lower = v.lower()
        if v_lower not in allowed_envs:
            raise ValueError(f"app_env must be one of {allowed_envs}")
        return v_lower

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"

    @property
    def calendar_enabled(self) -> bool:
        """Calendar sync is only attempted when a token is configured."""
        return bool(self.google_calendar_access_token)


# Global settings instance
settings = Settings()
