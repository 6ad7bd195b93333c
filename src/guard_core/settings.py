from __future__ import annotations

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from guard_core.circuit_breaker.breaker import CircuitBreakerConfig
from guard_core.circuit_breaker.state import CircuitState
from guard_core.logging import get_log_level_value


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class CircuitBreakerSettings(BaseSettings):
    """Environment-driven circuit breaker settings.

    Read from ``CIRCUIT_BREAKER_*`` variables, e.g.
    ``CIRCUIT_BREAKER_ERROR_THRESHOLD=4`` and
    ``CIRCUIT_BREAKER_ERROR_WINDOW_MS=1000``.
    """

    model_config = prefixed_settings_config("CIRCUIT_BREAKER_")

    error_threshold: int = 3
    error_window_ms: int = 3000
    initial_state: CircuitState = CircuitState.CLOSED
    log_level: str = "INFO"

    @field_validator("error_threshold")
    @classmethod
    def _validate_error_threshold(cls, value: int) -> int:
        if value < 1:
            raise ValueError("error_threshold must be >= 1")
        return value

    @field_validator("error_window_ms")
    @classmethod
    def _validate_error_window_ms(cls, value: int, info: ValidationInfo) -> int:
        if value < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return value

    @field_validator("initial_state", mode="before")
    @classmethod
    def _normalize_initial_state(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower().replace("-", "_")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        get_log_level_value(value)
        return value.strip().upper()

    def to_config(self) -> CircuitBreakerConfig:
        """Build the breaker configuration, converting the window to seconds."""
        return CircuitBreakerConfig(
            error_threshold=self.error_threshold,
            error_window=self.error_window_ms / 1000,
            initial_state=self.initial_state,
        )
