"""Configuration settings for the scheduling core."""
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


def _parse_minutes(raw: str) -> list[float]:
    """Parse a comma separated list of minutes, e.g. "1,10"."""
    return [float(part) for part in raw.split(",") if part.strip()]


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///wordsrs.db"))
    echo: bool = field(default_factory=lambda: os.getenv("DATABASE_ECHO", "false").lower() == "true")


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = field(default_factory=lambda: os.getenv("LOG_FILE"))


@dataclass
class SchedulerSettings:
    """Spaced repetition scheduler settings."""
    desired_retention: float = field(
        default_factory=lambda: float(os.getenv("SRS_DESIRED_RETENTION", "0.9"))
    )
    learning_steps_minutes: list[float] = field(
        default_factory=lambda: _parse_minutes(os.getenv("SRS_LEARNING_STEPS_MINUTES", "1,10"))
    )
    relearning_steps_minutes: list[float] = field(
        default_factory=lambda: _parse_minutes(os.getenv("SRS_RELEARNING_STEPS_MINUTES", "10"))
    )
    mature_interval_days: int = field(
        default_factory=lambda: int(os.getenv("SRS_MATURE_INTERVAL_DAYS", "21"))
    )


@dataclass
class DebounceSettings:
    """Review debounce settings."""
    window_ms: int = field(default_factory=lambda: int(os.getenv("SRS_DEBOUNCE_WINDOW_MS", "500")))
    max_entries: int = field(default_factory=lambda: int(os.getenv("SRS_DEBOUNCE_MAX_ENTRIES", "10000")))


@dataclass
class RecomputeSettings:
    """Batch recomputation settings."""
    page_size: int = field(default_factory=lambda: int(os.getenv("SRS_RECOMPUTE_PAGE_SIZE", "500")))


@dataclass
class MonitoringSettings:
    """Prometheus metrics settings."""
    enabled: bool = field(default_factory=lambda: os.getenv("METRICS_ENABLED", "false").lower() == "true")
    port: int = field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9090")))


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_scheduler_settings() -> SchedulerSettings:
    """Get scheduler settings."""
    return SchedulerSettings()


def get_debounce_settings() -> DebounceSettings:
    """Get debounce settings."""
    return DebounceSettings()


def get_recompute_settings() -> RecomputeSettings:
    """Get recompute settings."""
    return RecomputeSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    scheduler: SchedulerSettings = field(default_factory=get_scheduler_settings)
    debounce: DebounceSettings = field(default_factory=get_debounce_settings)
    recompute: RecomputeSettings = field(default_factory=get_recompute_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        if not self.database.url:
            raise ValueError("DATABASE_URL is required")

        retention = self.scheduler.desired_retention
        if not 0 < retention < 1:
            raise ValueError("SRS_DESIRED_RETENTION must be between 0 and 1 (exclusive)")

        if any(step <= 0 for step in self.scheduler.learning_steps_minutes):
            raise ValueError("SRS_LEARNING_STEPS_MINUTES must contain positive values")

        if any(step <= 0 for step in self.scheduler.relearning_steps_minutes):
            raise ValueError("SRS_RELEARNING_STEPS_MINUTES must contain positive values")

        if self.scheduler.mature_interval_days < 1:
            raise ValueError("SRS_MATURE_INTERVAL_DAYS must be positive")

        if self.debounce.window_ms <= 0:
            raise ValueError("SRS_DEBOUNCE_WINDOW_MS must be positive")

        if self.debounce.max_entries < 1:
            raise ValueError("SRS_DEBOUNCE_MAX_ENTRIES must be positive")

        if self.recompute.page_size < 1:
            raise ValueError("SRS_RECOMPUTE_PAGE_SIZE must be positive")


# Create global settings instance
settings = Settings()
settings.validate()
