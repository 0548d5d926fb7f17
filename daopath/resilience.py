"""
daopath Resilience

Guards around blocking chain queries:

    Timeout          caller stops waiting at a deadline
    CircuitBreaker   fails fast after consecutive transport failures
    RetryPolicy      bounded attempts, exponential backoff with jitter

ResilientChainQuery composes them as retry(breaker(timeout(query))).

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import concurrent.futures
import logging
import random
import threading
import time
from enum import Enum, auto
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ════════════════════════════════════════════════════════════════════════════
# CIRCUIT BREAKER
# ════════════════════════════════════════════════════════════════════════════


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = auto()
    OPEN = auto()
    HALF_OPEN = auto()


class CircuitBreakerError(Exception):
    """Raised instead of calling through an open breaker."""
    def __init__(self, breaker_name: str, state: CircuitState):
        self.breaker_name = breaker_name
        self.state = state
        super().__init__(f"Circuit breaker '{breaker_name}' is {state.name}")


class CircuitBreaker:
    """
    Opens after ``failure_threshold`` consecutive failures.

    Once ``timeout_seconds`` have passed in OPEN, a single trial call is let
    through: success closes the breaker, failure reopens it. Exceptions in
    ``excluded_exceptions`` (contract reverts, local errors) pass through
    without counting.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        timeout_seconds: float = 30.0,
        excluded_exceptions: tuple = (),
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.timeout_seconds = timeout_seconds
        self.excluded_exceptions = excluded_exceptions
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._expire_open()
            return self._state

    def _expire_open(self) -> None:
        if self._state == CircuitState.OPEN and \
                time.monotonic() - self._opened_at >= self.timeout_seconds:
            self._set_state(CircuitState.HALF_OPEN)

    def _set_state(self, state: CircuitState) -> None:
        if state == self._state:
            return
        logger.info("Circuit breaker '%s': %s -> %s", self.name, self._state.name, state.name)
        self._state = state
        self._trial_in_flight = False
        if state == CircuitState.OPEN:
            self._opened_at = time.monotonic()
        elif state == CircuitState.CLOSED:
            self._failures = 0

    def _acquire(self) -> None:
        with self._lock:
            self._expire_open()
            if self._state == CircuitState.CLOSED:
                return
            if self._state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return
            raise CircuitBreakerError(self.name, self._state)

    def call(self, func: Callable[[], T]) -> T:
        """Run ``func`` unless the breaker is open."""
        self._acquire()
        try:
            result = func()
        except Exception as exc:
            if not isinstance(exc, self.excluded_exceptions):
                with self._lock:
                    self._failures += 1
                    if self._state == CircuitState.HALF_OPEN or \
                            self._failures >= self.failure_threshold:
                        self._set_state(CircuitState.OPEN)
            raise
        with self._lock:
            self._failures = 0
            self._set_state(CircuitState.CLOSED)
        return result

    def reset(self) -> None:
        with self._lock:
            self._set_state(CircuitState.CLOSED)


# ════════════════════════════════════════════════════════════════════════════
# RETRY POLICY
# ════════════════════════════════════════════════════════════════════════════


class RetryExhaustedError(Exception):
    """Every attempt failed with a retryable exception."""
    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Retry exhausted after {attempts} attempts: {last_exception}")


class RetryPolicy:
    """
    Up to ``max_attempts`` calls with exponential backoff and jitter.

    ``non_retryable_exceptions`` propagate from the attempt that raised
    them; any other exception is retried.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_seconds: float = 0.25,
        max_delay_seconds: float = 5.0,
        jitter_factor: float = 0.5,
        non_retryable_exceptions: tuple = (),
        on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.jitter_factor = jitter_factor
        self.non_retryable_exceptions = non_retryable_exceptions
        self._on_retry = on_retry

    def delay_for(self, attempt: int) -> float:
        """Pause after failed ``attempt`` (1-based)."""
        delay = self.base_delay_seconds * (2 ** (attempt - 1))
        delay += random.uniform(0, self.jitter_factor * delay)
        return min(delay, self.max_delay_seconds)

    def execute(self, func: Callable[[], T]) -> T:
        last_exception: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return func()
            except self.non_retryable_exceptions:
                raise
            except Exception as exc:
                last_exception = exc
                if attempt == self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                if self._on_retry:
                    self._on_retry(attempt, exc, delay)
                time.sleep(delay)
        raise RetryExhaustedError(self.max_attempts, last_exception)


# ════════════════════════════════════════════════════════════════════════════
# TIMEOUT
# ════════════════════════════════════════════════════════════════════════════


class OperationTimeout(Exception):
    """A call outlived its deadline."""
    def __init__(self, operation: str, timeout_seconds: float):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Operation '{operation}' timed out after {timeout_seconds}s")


class Timeout:
    """
    Deadline for a blocking call.

    The call runs on a worker thread that cannot be interrupted; past the
    deadline it is abandoned and finishes in the background.
    """

    def __init__(self, seconds: float, name: str = "operation"):
        self.seconds = seconds
        self.name = name

    def execute(self, func: Callable[[], T]) -> T:
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"timeout-{self.name}"
        )
        try:
            return executor.submit(func).result(timeout=self.seconds)
        except concurrent.futures.TimeoutError:
            raise OperationTimeout(self.name, self.seconds) from None
        finally:
            executor.shutdown(wait=False)


__all__ = [
    "CircuitState",
    "CircuitBreakerError",
    "CircuitBreaker",
    "RetryExhaustedError",
    "RetryPolicy",
    "OperationTimeout",
    "Timeout",
]
