"""Circuit breaker state primitives."""

from dataclasses import dataclass
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerStatus:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        state: Current breaker state.
        recent_failure_timestamps: Failure timestamps counted while ``CLOSED``,
            as of the most recent prune. Values come from the breaker clock.
    """

    state: CircuitState
    recent_failure_timestamps: tuple[float, ...]

    @property
    def failure_count(self) -> int:
        return len(self.recent_failure_timestamps)
