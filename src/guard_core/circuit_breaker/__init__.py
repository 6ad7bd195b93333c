"""Time-windowed circuit breaker.

Key behavior notes:
  - Failures are counted only while ``CLOSED`` and only inside a trailing
    window of ``error_window`` seconds. Stale entries are pruned on every
    ``fire()``, never in the background.
  - The ``error_threshold``-th failure inside the window trips the breaker.
  - ``OPEN → HALF_OPEN`` is time-driven: a recovery timer scheduled on entry
    to ``OPEN`` flips the state after ``error_window`` seconds, whether or not
    anyone calls ``fire()``. At most one timer is outstanding per breaker.
  - In ``HALF_OPEN`` a single probe runs; success closes the circuit and
    clears failure history, failure re-opens it with a fresh timer.
"""

from guard_core.circuit_breaker.breaker import (
    AsyncCircuitBreaker,
    CircuitBreaker,
    CircuitBreakerConfig,
)
from guard_core.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from guard_core.circuit_breaker.metrics import BreakerListener
from guard_core.circuit_breaker.scheduling import (
    AsyncioScheduler,
    Clock,
    Scheduler,
    ThreadingScheduler,
    TimerHandle,
)
from guard_core.circuit_breaker.state import BreakerStatus, CircuitState

__all__ = [
    "AsyncCircuitBreaker",
    "AsyncioScheduler",
    "BreakerListener",
    "BreakerStatus",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "Clock",
    "Scheduler",
    "ThreadingScheduler",
    "TimerHandle",
]
