"""Configuration management: environment variables (Pydantic Settings) + YAML config.

Env vars handle secrets and deployment-specific values.
monitoring.yml handles polling, countries, monitoring locations and scoring
limits (version-controlled).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ecoguard.ingestion.openweather import MonitoringLocation

# ---------------------------------------------------------------------------
# YAML config models (nested, loaded from config/monitoring.yml)
# ---------------------------------------------------------------------------


class LocationConfig(BaseModel):
    """A named point polled for weather conditions."""

    name: str
    lat: float
    lng: float

    def to_location(self) -> MonitoringLocation:
        return MonitoringLocation(name=self.name, lat=self.lat, lng=self.lng)


class FIRMSConfig(BaseModel):
    """NASA FIRMS country feed settings (ISO 3166 alpha-3 codes)."""

    countries: list[str] = ["MYS", "SGP", "IDN", "THA"]
    request_delay_seconds: float = 1.0


class OpenWeatherConfig(BaseModel):
    """OpenWeather polling settings."""

    request_delay_seconds: float = 0.1
    locations: list[LocationConfig] = []


class OpenAQConfig(BaseModel):
    """OpenAQ settings (ISO 3166 alpha-2 codes)."""

    countries: list[str] = ["MY", "SG", "ID", "TH"]
    request_delay_seconds: float = 1.0
    max_pages: int = 5


class IngestionConfig(BaseModel):
    """Scheduling and per-source ingestion settings."""

    poll_interval_minutes: int = 15
    source_timeout_seconds: float = 120.0
    request_timeout_seconds: float = 30.0
    sources: list[str] = ["usgs", "nasa-eonet", "nasa-firms", "openweather", "openaq"]
    firms: FIRMSConfig = FIRMSConfig()
    openweather: OpenWeatherConfig = OpenWeatherConfig()
    openaq: OpenAQConfig = OpenAQConfig()

    @field_validator("poll_interval_minutes")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v < 1:
            msg = f"poll_interval_minutes must be >= 1, got {v}"
            raise ValueError(msg)
        return v


class RiskConfig(BaseModel):
    """Risk assessment limits."""

    default_radius_km: float = 50.0
    window_hours: int = 24
    max_events: int = 10
    heatmap_max_cells: int = 1000
    heatmap_cell_radius_km: float = 25.0
    heatmap_concurrency: int = 10


class AlertConfig(BaseModel):
    """Fanout selection window and severity floor."""

    recent_window_minutes: int = 10
    min_severity: float = 4.0


class YAMLConfig(BaseModel):
    """Complete parsed monitoring.yml structure."""

    ingestion: IngestionConfig = IngestionConfig()
    risk: RiskConfig = RiskConfig()
    alerts: AlertConfig = AlertConfig()


# ---------------------------------------------------------------------------
# Environment settings (Pydantic Settings)
# ---------------------------------------------------------------------------

# Default path to monitoring.yml relative to project root
_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "monitoring.yml"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Secrets and deployment-specific values come from env vars.
    Polling, countries and thresholds come from monitoring.yml.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Upstream API keys (NASA FIRMS accepts DEMO_KEY with tight limits)
    nasa_api_key: str = "DEMO_KEY"
    openweather_api_key: str = ""
    openaq_api_key: str = ""

    # Twilio (SMS)
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_sms_from: str = ""

    # SMTP (email)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from_email: str = "alerts@ecoguard.local"
    smtp_start_tls: bool = True

    # Web push (VAPID)
    vapid_private_key: str = ""
    vapid_subject: str = "mailto:alerts@ecoguard.local"

    # Socket.IO broadcast server (scheduler mode)
    broadcast_host: str = "0.0.0.0"
    broadcast_port: int = 8765

    # Deployment
    environment: str = "dev"
    db_path: str = "./data/ecoguard.db"

    # Path to monitoring.yml (not typically set via env, but useful for testing)
    config_path: str = str(_DEFAULT_CONFIG_PATH)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"dev", "staging", "prod"}
        if v not in allowed:
            msg = f"ENVIRONMENT must be one of {allowed}, got '{v}'"
            raise ValueError(msg)
        return v

    @property
    def sms_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_sms_from)

    @property
    def email_configured(self) -> bool:
        return bool(self.smtp_host)

    def load_yaml_config(self) -> YAMLConfig:
        """Load and parse config/monitoring.yml into typed models."""
        config_file = Path(self.config_path)
        if not config_file.exists():
            msg = f"Config file not found: {config_file}"
            raise FileNotFoundError(msg)

        with open(config_file) as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}

        return YAMLConfig.model_validate(raw)


# Module-level singleton for convenience
_settings: Settings | None = None
_yaml_config: YAMLConfig | None = None


def get_settings() -> Settings:
    """Get or create the global Settings instance."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = Settings()
    return _settings


def get_yaml_config() -> YAMLConfig:
    """Get or create the global YAMLConfig instance."""
    global _yaml_config  # noqa: PLW0603
    if _yaml_config is None:
        _yaml_config = get_settings().load_yaml_config()
    return _yaml_config


def reset_config() -> None:
    """Reset cached config singletons. Useful for testing."""
    global _settings, _yaml_config  # noqa: PLW0603
    _settings = None
    _yaml_config = None
