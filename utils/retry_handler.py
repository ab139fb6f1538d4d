import asyncio
import inspect
import time
from functools import wraps
from typing import Any, Callable, Optional

from utils.logger import logger

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"

# Transport failures worth another attempt
RETRYABLE_ERRORS = (ConnectionError, TimeoutError, OSError)


class CircuitOpenError(Exception):
    """Raised while a circuit breaker refuses calls."""


# Failures that repeat identically on every attempt
NON_RETRYABLE_ERRORS = (ValueError, KeyError, CircuitOpenError)


class CircuitBreaker:
    """
    Stops calling a failing provider for timeout_duration seconds once
    failure_threshold consecutive calls failed; one trial call is let
    through afterwards (HALF_OPEN).
    """

    def __init__(
        self, name: str = "default", failure_threshold: int = 5, timeout_duration: int = 60
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.timeout_duration = timeout_duration
        self.reset()

    def reset(self):
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CLOSED

    def _before_call(self):
        if self.state != OPEN:
            return
        if time.time() - self.last_failure_time > self.timeout_duration:
            self.state = HALF_OPEN
            logger.info("Circuit breaker trial call", breaker=self.name)
            return
        raise CircuitOpenError(f"{self.name} circuit is OPEN - provider unavailable")

    def _on_success(self):
        if self.state == HALF_OPEN:
            logger.info("Circuit breaker closed", breaker=self.name)
        self.state = CLOSED
        self.failure_count = 0

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.state == HALF_OPEN or self.failure_count >= self.failure_threshold:
            self.state = OPEN
            logger.error(
                "Circuit breaker OPENED",
                breaker=self.name,
                failure_count=self.failure_count,
                threshold=self.failure_threshold,
            )

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Run func unless the circuit is open."""
        self._before_call()
        try:
            result = func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result


rate_breaker = CircuitBreaker("exchange_rates", failure_threshold=3, timeout_duration=60)


def retry_on_network_error(
    max_attempts: int = 2,
    delay_seconds: float = 2,
    backoff: float = 2.0,
    timeout_seconds: float = 30,
):
    """
    Retry an async call on transport errors only.

    Deterministic failures (bad payload, open circuit) are raised on the
    first attempt. The delay grows by `backoff` after each failure and no
    new attempt starts once timeout_seconds have elapsed.
    """

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            started = time.time()
            delay = delay_seconds
            last_error: Optional[BaseException] = None

            for attempt in range(1, max_attempts + 1):
                elapsed = time.time() - started
                if elapsed > timeout_seconds:
                    logger.error(
                        f"{func.__name__} retry budget exhausted",
                        elapsed_seconds=round(elapsed, 2),
                        timeout_limit=timeout_seconds,
                    )
                    raise TimeoutError(f"{func.__name__} exceeded {timeout_seconds}s")

                try:
                    if inspect.iscoroutinefunction(func):
                        return await func(*args, **kwargs)
                    return func(*args, **kwargs)

                except NON_RETRYABLE_ERRORS as e:
                    logger.error(f"{func.__name__} failed - no retry", error=str(e))
                    raise

                except RETRYABLE_ERRORS as e:
                    last_error = e
                    will_retry = attempt < max_attempts
                    logger.warning(
                        f"{func.__name__} network error",
                        attempt=attempt,
                        max_attempts=max_attempts,
                        error=str(e),
                        will_retry=will_retry,
                    )
                    if will_retry:
                        await asyncio.sleep(delay)
                        delay *= backoff

            logger.error(f"{func.__name__} failed after all retries", attempts=max_attempts)
            raise last_error

        return wrapper

    return decorator
