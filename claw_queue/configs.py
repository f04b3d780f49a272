"""
Configuration module for the claw queue.

Provides typed configuration sections with environment variable overrides
(``CLAW_QUEUE_*``).
"""

import os
from dataclasses import dataclass, field
from typing import Final


ENV_PREFIX: Final[str] = "CLAW_QUEUE_"


def _env(name: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _env_int(name: str, default: int) -> int:
    return int(_env(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(_env(name, str(default)))


# =============================================================================
# Configuration Classes
# =============================================================================


@dataclass(frozen=True)
class RedisSettings:
    """Redis connection settings."""

    host: str = field(default_factory=lambda: _env("REDIS_HOST", "localhost"))
    port: int = field(default_factory=lambda: _env_int("REDIS_PORT", 6379))
    decode_responses: bool = True
    key_prefix: str = field(default_factory=lambda: _env("REDIS_KEY_PREFIX", "claw"))


@dataclass(frozen=True)
class SchedulerSettings:
    """Session timing and actuator pulse settings."""

    credit_window_s: float = field(default_factory=lambda: _env_float("CREDIT_WINDOW_S", 35.0))
    first_move_window_s: float = field(default_factory=lambda: _env_float("FIRST_MOVE_WINDOW_S", 15.0))
    grab_finish_window_s: float = field(default_factory=lambda: _env_float("GRAB_FINISH_WINDOW_S", 7.0))
    heartbeat_interval_s: float = field(default_factory=lambda: _env_float("HEARTBEAT_INTERVAL_S", 4.0))
    credit_channel: str = "credit"
    grab_channel: str = "grab"
    direction_channels: tuple[str, ...] = ("up", "down", "left", "right")
    credit_pulse_ms: int = 200
    credit_pulse_gap_s: float = 0.4
    grab_pulse_ms: int = 300
    store_retry_s: float = field(default_factory=lambda: _env_float("STORE_RETRY_S", 1.0))


@dataclass(frozen=True)
class ActuatorSettings:
    """Relay board serial settings. An empty port selects the dry-run actuator."""

    port: str = field(default_factory=lambda: _env("ACTUATOR_PORT", ""))
    baudrate: int = field(default_factory=lambda: _env_int("ACTUATOR_BAUDRATE", 9600))
    write_timeout: float = 1.0


@dataclass(frozen=True)
class ServiceSettings:
    """External service URLs. An empty Loki URL disables remote logging."""

    loki_url: str = field(default_factory=lambda: _env("LOKI_URL", ""))
    websocket_url: str = field(default_factory=lambda: _env("WS_URL", "ws://localhost:8005/ws"))
    realtime_channel: str = field(default_factory=lambda: _env("REALTIME_CHANNEL", "public-chat"))


@dataclass(frozen=True)
class PaymentSettings:
    """Payment intake settings."""

    max_credits: int = field(default_factory=lambda: _env_int("MAX_CREDITS", 5))
    command_channel: str = field(default_factory=lambda: _env("COMMAND_CHANNEL", "claw_queue_commands"))

    @property
    def response_channel(self) -> str:
        """Get response channel name."""
        return f"{self.command_channel}_response"


@dataclass(frozen=True)
class LoggingSettings:
    """Log destinations. An empty file path disables the file handler."""

    app: str = "claw_queue"
    log_file: str = field(default_factory=lambda: _env("LOG_FILE", ""))
    level: str = field(default_factory=lambda: _env("LOG_LEVEL", "DEBUG"))


# =============================================================================
# Main Settings
# =============================================================================


@dataclass
class Settings:
    """
    Main application settings.

    Aggregates all configuration sections.
    """

    redis: RedisSettings = field(default_factory=RedisSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    actuator: ActuatorSettings = field(default_factory=ActuatorSettings)
    services: ServiceSettings = field(default_factory=ServiceSettings)
    payment: PaymentSettings = field(default_factory=PaymentSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


# =============================================================================
# Settings Singleton
# =============================================================================


_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
