"""Circuit breaker exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open.
  - The protected operation failing, which is re-raised unchanged.
"""


class CircuitBreakerError(Exception):
    """Base exception for the circuit breaker package."""


class CircuitOpenError(CircuitBreakerError):
    """Raised when a call is rejected because the circuit is open.

    Attributes:
        breaker_name: Name of the breaker rejecting the call.
        error_threshold: Failures within the window that trip the breaker.
        error_window: Failure-counting window, in seconds.
    """

    def __init__(
        self, breaker_name: str, *, error_threshold: int, error_window: float
    ) -> None:
        """Initialize a circuit-open exception payload.

        Args:
            breaker_name: Breaker rejecting the call.
            error_threshold: Configured trip threshold.
            error_window: Configured window length in seconds.
        """
        self.breaker_name = breaker_name
        self.error_threshold = error_threshold
        self.error_window = error_window
        super().__init__(
            f"circuit_open: {breaker_name} error_threshold={error_threshold} "
            f"error_window={error_window:g}s"
        )
