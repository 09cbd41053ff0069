"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import Optional

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator


class BookingSettings(BaseModel):
    """Booking rules and tuning knobs passed explicitly to the engine."""
    minimum_advance_booking_hours: int = 2
    maximum_advance_booking_days: int = 90
    cancellation_policy_hours: int = 24
    default_slot_duration_minutes: int = 60
    default_buffer_minutes: int = 0
    availability_cache_ttl: int = 3600
    soft_lock_duration_minutes: int = 15
    lock_timeout_seconds: float = 10.0
    enable_rate_limiting: bool = True
    rate_limit_per_email: int = 5
    rate_limit_per_ip: int = 10
    rate_limit_window_seconds: int = 3600
    owner_notification_enabled: bool = True
    timezone: str = "Europe/Zurich"

    @field_validator(
        "minimum_advance_booking_hours",
        "maximum_advance_booking_days",
        "cancellation_policy_hours",
        "default_buffer_minutes",
    )
    @classmethod
    def validate_non_negative(cls, value: int) -> int:
        """Ensure hour/day/minute offsets are not negative."""
        if value < 0:
            raise ValueError(f"Value must be zero or greater, got {value}")
        return value

    @field_validator(
        "default_slot_duration_minutes",
        "availability_cache_ttl",
        "soft_lock_duration_minutes",
        "rate_limit_per_email",
        "rate_limit_per_ip",
        "rate_limit_window_seconds",
    )
    @classmethod
    def validate_positive(cls, value: int) -> int:
        """Ensure durations and limits are positive."""
        if value <= 0:
            raise ValueError(f"Value must be greater than zero, got {value}")
        return value

    @field_validator("lock_timeout_seconds")
    @classmethod
    def validate_lock_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("lock_timeout_seconds must be greater than zero")
        return value

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the timezone is a known IANA identifier."""
        try:
            pendulum.timezone(value)
        except Exception as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value


class AppConfig(BaseModel):
    """Application configuration."""
    settings: BookingSettings = Field(default_factory=BookingSettings)
    data_file: Optional[Path] = None

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        config = cls(**data)

        # Relative data paths are resolved against the config file location
        if config.data_file is not None and not config.data_file.is_absolute():
            config.data_file = (config_path.parent / config.data_file).resolve()

        return config

    def resolve_data_file(self, override: Optional[Path] = None) -> Path:
        """
        Pick the booking data file, preferring an explicit override.

        Raises:
            ValueError: If no data file is configured
        """
        data_file = override or self.data_file
        if data_file is None:
            raise ValueError(
                "No booking data file configured. Pass --data or set data_file in config.yaml."
            )
        return data_file


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
