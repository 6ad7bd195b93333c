"""Core circuit breaker implementation."""

import math
import threading
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import NoReturn

import structlog

from guard_core.circuit_breaker.exceptions import CircuitOpenError
from guard_core.circuit_breaker.metrics import BreakerListener
from guard_core.circuit_breaker.scheduling import (
    AsyncioScheduler,
    Clock,
    Scheduler,
    ThreadingScheduler,
    TimerHandle,
)
from guard_core.circuit_breaker.state import BreakerStatus, CircuitState
from guard_core.logging import (
    LoggerLike,
    bind_breaker_logger,
    log_exception,
    log_info,
    log_warning,
)


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        error_threshold: Failures within the window that trip the breaker.
        error_window: Seconds of failure history counted while ``CLOSED``;
            also the time spent ``OPEN`` before a probe is allowed.
        initial_state: State the breaker starts in. Mostly useful for tests.
        expected_exceptions: Exceptions that count as failures.
        excluded_exceptions: Exceptions that must not count as failures.
    """

    error_threshold: int = 3
    error_window: float = 3.0
    initial_state: CircuitState = CircuitState.CLOSED
    expected_exceptions: tuple[type[Exception], ...] = (Exception,)
    excluded_exceptions: tuple[type[Exception], ...] = ()

    def __post_init__(self) -> None:
        threshold = self.error_threshold
        if isinstance(threshold, bool) or not isinstance(threshold, int):
            raise TypeError("error_threshold must be an int")
        if threshold < 1:
            raise ValueError("error_threshold must be >= 1")
        window = self.error_window
        if isinstance(window, bool) or not isinstance(window, (int, float)):
            raise TypeError("error_window must be a number of seconds")
        if not math.isfinite(window):
            raise ValueError("error_window must be finite")
        if window < 0:
            raise ValueError("error_window must be >= 0")
        self.error_window = float(window)
        self.initial_state = CircuitState(self.initial_state)


class _BreakerCore:
    """State machine shared by the sync and async breakers.

    All reads and writes of ``_state``, ``_failure_timestamps`` and the
    recovery timer happen under ``_lock``. Listener hooks and logging run
    after the lock is released.
    """

    def __init__(
        self,
        *,
        name: str,
        config: CircuitBreakerConfig | None,
        clock: Clock | None,
        scheduler: Scheduler,
        listeners: Sequence[BreakerListener] | None,
        logger: LoggerLike | None,
    ) -> None:
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._clock = time.monotonic if clock is None else clock
        self._scheduler = scheduler
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._logger = bind_breaker_logger(
            structlog.stdlib.get_logger(__name__) if logger is None else logger,
            breaker=name,
        )
        self._lock = threading.Lock()
        self._probe_in_flight = False
        self._state = self.config.initial_state
        self._failure_timestamps: list[float] = []
        self._recovery_timer: TimerHandle | None = None
        self._timer_generation = 0

        if self._state == CircuitState.OPEN:
            with self._lock:
                self._schedule_recovery_locked()

    @property
    def state(self) -> CircuitState:
        """Current breaker state."""
        with self._lock:
            return self._state

    @property
    def status(self) -> BreakerStatus:
        """Return state and failure history without pruning."""
        with self._lock:
            return BreakerStatus(
                state=self._state,
                recent_failure_timestamps=tuple(self._failure_timestamps),
            )

    def close(self) -> None:
        """Cancel the pending recovery timer, if any.

        Call this when discarding a breaker that may be ``OPEN``. The breaker
        still accepts ``fire()`` afterwards, but if it is ``OPEN`` it will not
        recover on its own.
        """
        with self._lock:
            timer = self._recovery_timer
            self._recovery_timer = None
            self._timer_generation += 1
        if timer is not None:
            timer.cancel()

    def _schedule_recovery_locked(self) -> None:
        # Schedulers must not run the callback synchronously; it takes _lock.
        if self._recovery_timer is not None:
            self._recovery_timer.cancel()
        self._timer_generation += 1
        generation = self._timer_generation
        self._recovery_timer = self._scheduler.call_later(
            self.config.error_window,
            lambda: self._on_recovery_timer(generation),
        )

    def _on_recovery_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._timer_generation:
                return
            if self._state != CircuitState.OPEN:
                return
            self._recovery_timer = None
            self._state = CircuitState.HALF_OPEN
        self._emit_state_change(CircuitState.OPEN, CircuitState.HALF_OPEN)

    def _prune_locked(self, now: float) -> None:
        cutoff = now - self.config.error_window
        self._failure_timestamps = [
            timestamp for timestamp in self._failure_timestamps if timestamp >= cutoff
        ]

    def _admit(self) -> tuple[CircuitState, bool]:
        """Prune history and decide whether a call may run.

        State read and probe claim happen under one lock acquisition, so a
        call admitted as ``HALF_OPEN`` is always the single probe.

        Returns:
            The state the call was admitted in and whether it claimed the
            probe slot (the caller must release it).

        Raises:
            CircuitOpenError: When the circuit is open or a probe is in flight.
        """
        rejected = False
        with self._lock:
            self._prune_locked(self._clock())
            state = self._state
            if state == CircuitState.OPEN:
                rejected = True
            elif state == CircuitState.HALF_OPEN:
                rejected = self._probe_in_flight
                self._probe_in_flight = True

        if rejected:
            self._reject()
        return state, state == CircuitState.HALF_OPEN

    def _release_probe(self) -> None:
        with self._lock:
            self._probe_in_flight = False

    def _reject(self) -> NoReturn:
        log_warning(
            self._logger,
            "circuit_breaker.call_rejected",
            error_threshold=self.config.error_threshold,
            error_window=self.config.error_window,
        )
        self._emit_call_rejected()
        raise CircuitOpenError(
            self.name,
            error_threshold=self.config.error_threshold,
            error_window=self.config.error_window,
        )

    def _elapsed_since(self, start: float) -> float:
        return max(self._clock() - start, 0.0)

    def _record_success(self, admitted: CircuitState, elapsed: float) -> None:
        closed = False
        with self._lock:
            if admitted == CircuitState.HALF_OPEN and self._state == admitted:
                self._state = CircuitState.CLOSED
                self._failure_timestamps.clear()
                closed = True

        if closed:
            self._emit_state_change(CircuitState.HALF_OPEN, CircuitState.CLOSED)
        self._emit_call_succeeded(elapsed)

    def _record_failure(
        self, admitted: CircuitState, exc: Exception, elapsed: float
    ) -> None:
        opened_from: CircuitState | None = None
        with self._lock:
            # Outcomes only apply to the state the call was admitted in.
            if self._state == admitted == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                self._schedule_recovery_locked()
                opened_from = CircuitState.HALF_OPEN
            elif self._state == admitted == CircuitState.CLOSED:
                self._failure_timestamps.append(self._clock())
                if len(self._failure_timestamps) >= self.config.error_threshold:
                    self._state = CircuitState.OPEN
                    self._schedule_recovery_locked()
                    opened_from = CircuitState.CLOSED

        self._emit_call_failed(exc, elapsed)
        if opened_from is not None:
            self._emit_state_change(opened_from, CircuitState.OPEN)

    def _emit_state_change(self, old: CircuitState, new: CircuitState) -> None:
        log = log_warning if new == CircuitState.OPEN else log_info
        log(
            self._logger,
            "circuit_breaker.state_changed",
            old_state=str(old),
            new_state=str(new),
        )
        for listener in self._listeners:
            try:
                listener.on_state_change(self.name, old, new)
            except Exception:
                self._log_listener_failure("on_state_change")

    def _emit_call_rejected(self) -> None:
        for listener in self._listeners:
            try:
                listener.on_call_rejected(self.name)
            except Exception:
                self._log_listener_failure("on_call_rejected")

    def _emit_call_succeeded(self, elapsed: float) -> None:
        for listener in self._listeners:
            try:
                listener.on_call_succeeded(self.name, elapsed)
            except Exception:
                self._log_listener_failure("on_call_succeeded")

    def _emit_call_failed(self, exc: Exception, elapsed: float) -> None:
        for listener in self._listeners:
            try:
                listener.on_call_failed(self.name, exc, elapsed)
            except Exception:
                self._log_listener_failure("on_call_failed")

    def _log_listener_failure(self, hook: str) -> None:
        log_exception(
            self._logger,
            "circuit_breaker.listener_failed",
            hook=hook,
        )


class CircuitBreaker(_BreakerCore):
    """Stateful guard around a dangerous zero-argument operation."""

    def __init__(
        self,
        operation: Callable[[], object],
        *,
        config: CircuitBreakerConfig | None = None,
        name: str = "circuit_breaker",
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
        listeners: Sequence[BreakerListener] | None = None,
        logger: LoggerLike | None = None,
    ) -> None:
        """Build a circuit breaker with optional custom dependencies.

        Args:
            operation: Protected call. Raising an exception signals failure.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            name: Breaker name used in errors, logs and listener events.
            clock: Time source in seconds. Defaults to ``time.monotonic``.
            scheduler: Recovery timer scheduler. Defaults to
                ``ThreadingScheduler()``.
            listeners: Optional listener hooks for breaker events.
            logger: Structured or stdlib logger. Defaults to a structlog
                logger for this module.
        """
        super().__init__(
            name=name,
            config=config,
            clock=clock,
            scheduler=ThreadingScheduler() if scheduler is None else scheduler,
            listeners=listeners,
            logger=logger,
        )
        self._operation = operation

    def fire(self) -> None:
        """Invoke the protected operation under circuit breaker protection.

        Raises:
            CircuitOpenError: When the circuit is open and the call is rejected.
            Exception: The original exception from the operation, re-raised
                after it has been recorded.
        """
        admitted, probe_acquired = self._admit()
        start = self._clock()
        try:
            self._operation()
        except self.config.excluded_exceptions:
            raise
        except self.config.expected_exceptions as exc:
            self._record_failure(admitted, exc, self._elapsed_since(start))
            raise
        else:
            self._record_success(admitted, self._elapsed_since(start))
        finally:
            if probe_acquired:
                self._release_probe()


class AsyncCircuitBreaker(_BreakerCore):
    """Circuit breaker around an awaitable zero-argument operation.

    The outcome is evaluated once the awaited operation completes. While a
    half-open probe is pending, concurrent ``fire()`` calls are rejected.
    """

    def __init__(
        self,
        operation: Callable[[], Awaitable[object]],
        *,
        config: CircuitBreakerConfig | None = None,
        name: str = "circuit_breaker",
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
        listeners: Sequence[BreakerListener] | None = None,
        logger: LoggerLike | None = None,
    ) -> None:
        """Build an async circuit breaker.

        Arguments match ``CircuitBreaker``; the default scheduler is
        ``AsyncioScheduler()``, which needs a running loop when a timer is
        scheduled (including construction with ``initial_state=OPEN``).
        """
        super().__init__(
            name=name,
            config=config,
            clock=clock,
            scheduler=AsyncioScheduler() if scheduler is None else scheduler,
            listeners=listeners,
            logger=logger,
        )
        self._operation = operation

    async def fire(self) -> None:
        """Await the protected operation under circuit breaker protection.

        Raises:
            CircuitOpenError: When the circuit is open or a probe is pending.
            Exception: The original exception from the operation.
        """
        admitted, probe_acquired = self._admit()
        start = self._clock()
        try:
            await self._operation()
        except self.config.excluded_exceptions:
            raise
        except self.config.expected_exceptions as exc:
            self._record_failure(admitted, exc, self._elapsed_since(start))
            raise
        else:
            self._record_success(admitted, self._elapsed_since(start))
        finally:
            if probe_acquired:
                self._release_probe()
