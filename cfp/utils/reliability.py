"""
Reliability patterns for the CFP pipeline.

Provides circuit breakers, retry envelopes, and rate limiting for the external
calls made by every stage.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, Optional, Type

import structlog
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from cfp.core.exceptions import CircuitBreakerError, is_transient

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling and backoff window for one kind of operation."""

    name: str
    max_attempts: int
    backoff_base: float
    backoff_max: float


CRAWL_RETRY = RetryPolicy("crawl", max_attempts=3, backoff_base=2.0, backoff_max=30.0)
LLM_RETRY = RetryPolicy("llm", max_attempts=2, backoff_base=1.0, backoff_max=10.0)
STORAGE_RETRY = RetryPolicy("storage", max_attempts=3, backoff_base=0.5, backoff_max=5.0)
PUBLISH_RETRY = RetryPolicy("publish", max_attempts=3, backoff_base=2.0, backoff_max=30.0)


class CircuitBreakerState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker pattern implementation.

    Prevents cascading failures by opening the circuit when error thresholds are exceeded.
    Works for both plain callables (``call``) and coroutine functions (``acall``).
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        expected_exception: Type[Exception] = Exception,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitBreakerState.CLOSED
        self._lock = threading.Lock()

    def _before_call(self) -> None:
        with self._lock:
            if self.state == CircuitBreakerState.OPEN:
                if self._should_attempt_reset():
                    self.state = CircuitBreakerState.HALF_OPEN
                    logger.info("Circuit breaker half-open", name=self.name)
                else:
                    raise CircuitBreakerError(
                        f"Circuit breaker '{self.name}' is open. "
                        f"Next attempt allowed at {self.last_failure_time + self.recovery_timeout}"
                    )

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection."""
        self._before_call()
        try:
            result = func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    async def acall(self, func: Callable, *args, **kwargs) -> Any:
        """Await a coroutine function with circuit breaker protection."""
        self._before_call()
        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt reset."""
        return (
            self.last_failure_time is not None
            and time.time() >= self.last_failure_time + self.recovery_timeout
        )

    def _on_success(self):
        with self._lock:
            self.failure_count = 0
            if self.state == CircuitBreakerState.HALF_OPEN:
                self.state = CircuitBreakerState.CLOSED
                logger.info("Circuit breaker closed", name=self.name)

    def _on_failure(self):
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = time.time()

            if self.failure_count >= self.failure_threshold:
                self.state = CircuitBreakerState.OPEN
                logger.warning(
                    "Circuit breaker opened",
                    name=self.name,
                    failure_count=self.failure_count,
                    threshold=self.failure_threshold,
                )

    def reset(self) -> None:
        with self._lock:
            self.failure_count = 0
            self.state = CircuitBreakerState.CLOSED
            self.last_failure_time = None

    @property
    def status(self) -> Dict[str, Any]:
        """Get current circuit breaker status."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time,
            "next_attempt_time": (
                self.last_failure_time + self.recovery_timeout if self.last_failure_time else None
            ),
        }


class AdaptiveRateLimiter:
    """
    Adaptive rate limiter using token bucket algorithm.

    Automatically adjusts rate based on error patterns.
    """

    def __init__(self, calls_per_second: float = 2.0, burst_size: int = 5, adaptive: bool = True):
        self.base_calls_per_second = calls_per_second
        self.current_calls_per_second = calls_per_second
        self.burst_size = burst_size
        self.adaptive = adaptive

        self.tokens = float(burst_size)
        self.last_refill = time.monotonic()
        self.consecutive_errors = 0
        self.consecutive_successes = 0
        self._lock = threading.Lock()

    def _try_take(self) -> float:
        """Take a token if available; otherwise return seconds until the next one."""
        with self._lock:
            self._refill_tokens()
            if self.tokens >= 1:
                self.tokens -= 1
                return 0.0
            return (1 - self.tokens) / self.current_calls_per_second

    async def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Acquire a token, waiting cooperatively if necessary.

        Returns True if token acquired, False if timeout exceeded.
        """
        start_time = time.monotonic()

        while True:
            wait_time = self._try_take()
            if wait_time == 0.0:
                return True

            if timeout is not None and (time.monotonic() - start_time + wait_time) > timeout:
                return False

            await asyncio.sleep(min(wait_time, 0.1))

    def _refill_tokens(self):
        """Refill token bucket based on elapsed time."""
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.burst_size, self.tokens + elapsed * self.current_calls_per_second)
        self.last_refill = now

    def on_success(self):
        """Called after successful operation to potentially increase rate."""
        if not self.adaptive:
            return

        self.consecutive_errors = 0
        self.consecutive_successes += 1

        if self.consecutive_successes >= 10:
            self.current_calls_per_second = min(
                self.base_calls_per_second * 1.5, self.current_calls_per_second * 1.1
            )
            self.consecutive_successes = 0

    def on_error(self):
        """Called after error to potentially decrease rate."""
        if not self.adaptive:
            return

        self.consecutive_successes = 0
        self.consecutive_errors += 1

        if self.consecutive_errors >= 3:
            self.current_calls_per_second = max(
                self.base_calls_per_second * 0.5, self.current_calls_per_second * 0.8
            )
            self.consecutive_errors = 0

    @property
    def status(self) -> Dict[str, Any]:
        """Get current rate limiter status."""
        return {
            "base_calls_per_second": self.base_calls_per_second,
            "current_calls_per_second": self.current_calls_per_second,
            "tokens": self.tokens,
            "consecutive_errors": self.consecutive_errors,
            "consecutive_successes": self.consecutive_successes,
        }


_breakers: Dict[str, CircuitBreaker] = {}


def with_circuit_breaker(
    name: str,
    failure_threshold: int = 5,
    recovery_timeout: float = 60.0,
    expected_exception: Type[Exception] = Exception,
):
    """Decorator to add circuit breaker protection to coroutine functions."""
    if name not in _breakers:
        _breakers[name] = CircuitBreaker(
            name, failure_threshold, recovery_timeout, expected_exception
        )

    breaker = _breakers[name]

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await breaker.acall(func, *args, **kwargs)

        wrapper.circuit_breaker = breaker
        return wrapper

    return decorator


def with_retry(
    max_attempts: int = 3,
    backoff_base: float = 1.0,
    backoff_max: float = 60.0,
    retry_on: Callable[[BaseException], bool] = is_transient,
):
    """
    Decorator adding exponential backoff with full jitter.

    Only exceptions for which ``retry_on`` returns True are retried; anything
    else propagates immediately. Exhausting ``max_attempts`` raises
    ``tenacity.RetryError`` wrapping the last failure.
    """

    def decorator(func: Callable) -> Callable:
        @retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_random_exponential(multiplier=backoff_base, max=backoff_max),
            retry=retry_if_exception(retry_on),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if retry_on(e):
                    logger.warning(
                        "Retrying operation",
                        function=func.__name__,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                raise

        return wrapper

    return decorator


def with_retry_policy(policy: RetryPolicy, retry_on: Callable[[BaseException], bool] = is_transient):
    """Shorthand for ``with_retry`` configured from a named policy."""
    return with_retry(
        max_attempts=policy.max_attempts,
        backoff_base=policy.backoff_base,
        backoff_max=policy.backoff_max,
        retry_on=retry_on,
    )


async def call_with_retry(
    policy: RetryPolicy,
    func: Callable,
    *args,
    retry_on: Callable[[BaseException], bool] = is_transient,
    **kwargs,
) -> Any:
    """Await ``func(*args, **kwargs)`` inside the retry envelope for ``policy``."""
    wrapped = with_retry_policy(policy, retry_on=retry_on)(func)
    return await wrapped(*args, **kwargs)


def get_circuit_breaker_status() -> Dict[str, Any]:
    """Get status of all circuit breakers."""
    return {name: breaker.status for name, breaker in _breakers.items()}


def reset_circuit_breaker(name: str) -> bool:
    """Reset a circuit breaker by name."""
    breaker = _breakers.get(name)
    if breaker is None:
        return False
    breaker.reset()
    logger.info("Circuit breaker reset", name=name)
    return True
