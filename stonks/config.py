from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .streaming.bus import QueueFullPolicy
from .streaming.supervisor import RestartPolicy, RetryPolicy
from .utils.timeframes import interval_to_seconds


# .env next to the project root (one level above this package)
_env_file = Path(__file__).parent.parent / ".env"


class ConfigError(ValueError):
    """Invalid configuration detected before the pipeline starts."""
    pass


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="STONKS_",
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Symbols to track (comma-separated)
    symbols: str = ""

    # Provider
    interval: str = "1h"  # Yahoo granularity
    yahoo_base_url: str = "https://query1.finance.yahoo.com"
    request_timeout: float = 10.0

    # Scheduling
    poll_seconds: float = 10.0
    once_timeout: float = 60.0

    # Report
    average_window: int = 30

    # Event bus
    queue_maxsize: int = 100
    queue_full_policy: str = "block"  # block | drop_oldest | reject

    # Dispatcher
    max_in_flight: int = 8
    fetch_attempts: int = 3
    retry_base_delay: float = 0.5
    retry_max_delay: float = 10.0

    # Supervisor
    stage_attempts: int = 1
    max_restarts: int | None = None  # None = restart forever
    restart_backoff: float = 1.0

    log_level: str = "INFO"

    @field_validator("interval")
    @classmethod
    def _check_interval(cls, value: str) -> str:
        interval_to_seconds(value)
        return value.strip()

    @field_validator("poll_seconds")
    @classmethod
    def _check_poll_seconds(cls, value: float) -> float:
        return max(1.0, value)  # Minimum 1 second

    @field_validator("queue_full_policy")
    @classmethod
    def _check_policy(cls, value: str) -> str:
        QueueFullPolicy(value.strip().lower())
        return value.strip().lower()

    @field_validator("average_window")
    @classmethod
    def _check_window(cls, value: int) -> int:
        if value <= 1:
            raise ValueError("average_window must be greater than 1")
        return value

    def get_symbols(self) -> list[str]:
        """Parse symbols (trimmed, de-duplicated, order kept, otherwise as given)."""
        seen: list[str] = []
        for s in self.symbols.split(","):
            s = s.strip()
            if s and s not in seen:
                seen.append(s)
        return seen

    def get_queue_policy(self) -> QueueFullPolicy:
        return QueueFullPolicy(self.queue_full_policy)

    def get_fetch_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=max(1, self.fetch_attempts),
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )

    def get_stage_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=max(1, self.stage_attempts),
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )

    def get_restart_policy(self) -> RestartPolicy:
        return RestartPolicy(max_restarts=self.max_restarts, backoff=self.restart_backoff)


def get_settings(**overrides) -> Settings:
    try:
        return Settings(**overrides)
    except ValueError as e:
        raise ConfigError(str(e)) from e
