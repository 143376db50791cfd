"""
Async circuit breaker guarding the outbound Gemini call.

States:
    - closed:    calls pass through; consecutive failures are counted
    - open:      calls fail fast with CircuitOpenError until reset_timeout elapses
    - half-open: one trial call is let through; success closes the circuit,
                 failure re-opens it
"""

import asyncio
import time
from typing import Any, Awaitable, Callable

from exceptions import AIServiceError
from services.observability import logger, metrics

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half-open"


class CircuitOpenError(AIServiceError):
    """Raised when the circuit is open and calls are short-circuited."""


class CircuitBreaker:
    def __init__(self, name: str, failure_threshold: int = 5, reset_timeout: float = 30.0):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout

        self.state = CLOSED
        self.failures = 0
        self.last_failure_time = None
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

    def _seconds_until_reset(self) -> float:
        if self.last_failure_time is None:
            return 0.0
        return max(0.0, self.reset_timeout - (time.monotonic() - self.last_failure_time))

    async def _before_call(self) -> None:
        async with self._lock:
            if self.state == OPEN:
                if self._seconds_until_reset() > 0:
                    metrics.increment("circuit.rejected", tags={"name": self.name})
                    raise CircuitOpenError(
                        f"AI service is temporarily unavailable. "
                        f"Retry in {self._seconds_until_reset():.0f} seconds."
                    )
                logger.info("Circuit reset timeout reached, moving to half-open", circuit=self.name)
                self.state = HALF_OPEN

            if self.state == HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError("AI service is recovering. Please try again shortly.")
                self._trial_in_flight = True

    async def _on_success(self) -> None:
        async with self._lock:
            if self.state == HALF_OPEN:
                logger.info("Trial call succeeded, closing circuit", circuit=self.name)
            self.state = CLOSED
            self.failures = 0
            self._trial_in_flight = False
            metrics.gauge("circuit.failures", 0, tags={"name": self.name})

    async def _on_failure(self, error: Exception) -> None:
        async with self._lock:
            self.failures += 1
            self.last_failure_time = time.monotonic()
            self._trial_in_flight = False
            metrics.gauge("circuit.failures", self.failures, tags={"name": self.name})

            if self.state == HALF_OPEN or self.failures >= self.failure_threshold:
                if self.state != OPEN:
                    logger.error(
                        "Circuit breaker opened",
                        circuit=self.name, failures=self.failures, error=str(error)
                    )
                    metrics.increment("circuit.opened", tags={"name": self.name})
                self.state = OPEN

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run `func` through the breaker."""
        await self._before_call()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            await self._on_failure(e)
            raise
        except BaseException:
            # cancelled trial: free the half-open slot without counting a failure
            self._trial_in_flight = False
            raise
        await self._on_success()
        return result

    def snapshot(self) -> dict:
        return {
            "name": self.name,
            "state": self.state,
            "failures": self.failures,
            "seconds_until_reset": round(self._seconds_until_reset(), 1) if self.state == OPEN else 0.0,
        }
