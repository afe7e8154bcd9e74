"""
Reliability Utilities.

Circuit breaker and retry-with-backoff for calls to the push gateway.
"""

import time
import logging
from typing import Callable, Any, Tuple, Type

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger("schoolbus.reliability")


class CircuitOpenError(Exception):
    """Raised instead of calling through while the circuit is open."""


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    After ``failure_threshold`` failures in a row the circuit opens and
    rejects calls for ``reset_timeout`` seconds. The first call after that
    runs as a probe (HALF_OPEN): success closes the circuit, failure opens it
    again.

    Exceptions listed in ``excluded`` still propagate but count as a
    success: the dependency answered, it refused that one request.
    """
    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60,
        name: str = "push_gateway",
        excluded: Tuple[Type[BaseException], ...] = (),
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.excluded = excluded
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.monotonic() - self.last_failure_time < self.reset_timeout:
                raise CircuitOpenError(f"Circuit {self.name} is OPEN")
            self.state = "HALF_OPEN"

        try:
            result = await func(*args, **kwargs)
        except self.excluded:
            self.record_success()
            raise
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def record_failure(self) -> None:
        self.failures += 1
        self.last_failure_time = time.monotonic()
        if self.state == "HALF_OPEN" or self.failures >= self.failure_threshold:
            if self.state != "OPEN":
                logger.warning(
                    "Circuit opened",
                    extra={"circuit": self.name, "failures": self.failures},
                )
            self.state = "OPEN"

    def record_success(self) -> None:
        if self.state == "HALF_OPEN":
            logger.info("Circuit closed", extra={"circuit": self.name})
        self.failures = 0
        self.state = "CLOSED"


async def retry_async(
    func: Callable,
    *args,
    attempts: int = 3,
    base_delay: float = 0.5,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    **kwargs,
) -> Any:
    """
    Await ``func`` until it succeeds, with exponential backoff.

    Waits ``base_delay``, then twice that, and so on between attempts. Only
    exceptions in ``retry_on`` are retried; the last one is re-raised once
    ``attempts`` is exhausted.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base_delay),
        retry=retry_if_exception_type(retry_on),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )
    return await retrying(func, *args, **kwargs)
