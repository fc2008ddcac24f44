"""
Circuit Breaker

Guards the refresh+drain unit of work. After `failure_threshold`
consecutive failures the circuit opens and every call fails fast with
CircuitOpenError for `cooldown_seconds`. After the cooldown exactly one
trial call is let through: success closes the circuit, failure opens it
again for a new cooldown.

The clock is injectable so that state transitions can be tested without
sleeping.
"""

import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from dynconf.domain.errors import CircuitOpenError
from dynconf.logger.logger import get_logger
from dynconf.logger.types import Category, param

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    Attributes:
        name: Name used in logs and in CircuitOpenError
        failure_threshold: Consecutive failures that open the circuit
        cooldown_seconds: How long the circuit stays open
    """

    def __init__(
        self,
        name: str = "config-refresh",
        failure_threshold: int = 5,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be >= 0")

        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_until: float = 0.0
        self._trial_in_flight = False
        self.logger = get_logger().with_category(Category.CIRCUIT_BREAKER)

    @property
    def state(self) -> CircuitState:
        """Current state; an expired OPEN circuit reports HALF_OPEN."""
        if self._state is CircuitState.OPEN and self._clock() >= self._opened_until:
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        """Consecutive failures seen so far."""
        return self._failure_count

    @property
    def retry_after(self) -> float:
        """Seconds left until a trial call is allowed (0 when not open)."""
        if self._state is not CircuitState.OPEN:
            return 0.0
        return max(0.0, self._opened_until - self._clock())

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run an operation through the breaker.

        Args:
            operation: Async callable to run

        Returns:
            Whatever the operation returns

        Raises:
            CircuitOpenError: If the circuit is open or a trial is running
            Exception: Whatever the operation raised (counted as a failure)
        """
        self._before_call()
        try:
            result = await operation()
        except BaseException as e:
            # CancelledError освобождает trial, но не считается отказом
            if isinstance(e, Exception):
                self._on_failure(e)
            else:
                self._trial_in_flight = False
            raise
        self._on_success()
        return result

    def _before_call(self) -> None:
        state = self.state
        if state is CircuitState.OPEN:
            raise CircuitOpenError(self.name, self._failure_count, self.retry_after)

        if state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(self.name, self._failure_count)
            if self._state is not CircuitState.HALF_OPEN:
                self._transition(CircuitState.HALF_OPEN)
            self._trial_in_flight = True

    def _on_success(self) -> None:
        self._trial_in_flight = False
        self._failure_count = 0
        if self._state is not CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)

    def _on_failure(self, err: Exception) -> None:
        was_trial = self._trial_in_flight
        self._trial_in_flight = False
        self._failure_count += 1

        if was_trial or self._failure_count >= self.failure_threshold:
            self._opened_until = self._clock() + self.cooldown_seconds
            self._transition(CircuitState.OPEN, error=str(err))

    def _transition(self, new_state: CircuitState, error: str | None = None) -> None:
        old_state = self._state
        self._state = new_state
        fields = [
            param("breaker", self.name),
            param("from", old_state.value),
            param("to", new_state.value),
            param("failure_count", self._failure_count),
        ]
        if error is not None:
            fields.append(param("error", error))
        if new_state is CircuitState.OPEN:
            fields.append(param("cooldown_seconds", self.cooldown_seconds))
            self.logger.warn(f"Circuit '{self.name}' opened", *fields)
        else:
            self.logger.info(f"Circuit '{self.name}' {new_state.value}", *fields)

    def reset(self) -> None:
        """Force the circuit closed and clear the failure counter."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_until = 0.0
        self._trial_in_flight = False
