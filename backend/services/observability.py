"""
Module: observability.py
Description: Logging and metrics for the Expense AI backend.

Usage:
    from services.observability import logger, metrics, timed

    @timed("ai.analyze")
    async def analyze_transactions(self, transactions):
        logger.info("Analyzing", count=len(transactions))
"""

import asyncio
import functools
import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from config import get_settings


# =============================================================================
# Structured Logger
# =============================================================================

class StructuredLogger:
    """
    Thin wrapper over `logging` that renders keyword fields after the message,
    e.g. `Chat request | user=7 | msg_length=42`.

    Fields set with `set_context` are added to every line until cleared.
    """

    def __init__(self, name: str = "expense-ai", level: str = "INFO"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper(), logging.INFO))

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(
                "%(asctime)s | %(levelname)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ))
            self.logger.addHandler(handler)

        self._context: Dict[str, Any] = {}

    def set_context(self, **fields) -> None:
        self._context.update(fields)

    def clear_context(self) -> None:
        self._context = {}

    def _render(self, message: str, fields: Dict[str, Any]) -> str:
        merged = {**self._context, **fields}
        if not merged:
            return message
        return message + " | " + " | ".join(f"{k}={v}" for k, v in merged.items())

    def debug(self, message: str, **fields) -> None:
        self.logger.debug(self._render(message, fields))

    def info(self, message: str, **fields) -> None:
        self.logger.info(self._render(message, fields))

    def warning(self, message: str, **fields) -> None:
        self.logger.warning(self._render(message, fields))

    def error(self, message: str, **fields) -> None:
        self.logger.error(self._render(message, fields))

    def exception(self, message: str, **fields) -> None:
        """Error with the active traceback attached."""
        self.logger.exception(self._render(message, fields))


# =============================================================================
# Metrics Collector
# =============================================================================

class MetricsCollector:
    """Process-local counters, gauges and latency samples served by /metrics."""

    MAX_SAMPLES = 500

    def __init__(self):
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}
        self.timings: Dict[str, list] = defaultdict(list)
        self._started_at = datetime.utcnow()

    @staticmethod
    def _key(name: str, tags: Optional[Dict[str, str]]) -> str:
        if not tags:
            return name
        return name + ":" + ",".join(f"{k}={v}" for k, v in sorted(tags.items()))

    def increment(self, name: str, value: int = 1, tags: Dict[str, str] = None) -> None:
        self.counters[self._key(name, tags)] += value

    def gauge(self, name: str, value: float, tags: Dict[str, str] = None) -> None:
        self.gauges[self._key(name, tags)] = value

    def timing(self, name: str, duration_ms: float, tags: Dict[str, str] = None) -> None:
        samples = self.timings[self._key(name, tags)]
        samples.append(duration_ms)
        del samples[:-self.MAX_SAMPLES]

    def get_summary(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": (datetime.utcnow() - self._started_at).total_seconds(),
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "timings": {
                name: {
                    "count": len(samples),
                    "avg_ms": round(sum(samples) / len(samples), 2),
                    "max_ms": round(max(samples), 2),
                }
                for name, samples in self.timings.items() if samples
            },
        }

    def reset(self) -> None:
        self.counters.clear()
        self.gauges.clear()
        self.timings.clear()
        self._started_at = datetime.utcnow()


# =============================================================================
# Timing
# =============================================================================

def _record(name: str, started: float, ok: bool) -> None:
    duration_ms = (time.perf_counter() - started) * 1000
    metrics.increment(f"{name}.{'success' if ok else 'error'}")
    metrics.timing(name, duration_ms)
    logger.debug(f"{name} completed", ok=ok, duration_ms=f"{duration_ms:.2f}")


def timed(name: str = None):
    """Record call count, outcome and latency of a sync or async callable."""
    def decorator(func: Callable) -> Callable:
        metric_name = name or func.__name__

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                started = time.perf_counter()
                ok = False
                try:
                    result = await func(*args, **kwargs)
                    ok = True
                    return result
                finally:
                    _record(metric_name, started, ok)
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            ok = False
            try:
                result = func(*args, **kwargs)
                ok = True
                return result
            finally:
                _record(metric_name, started, ok)
        return wrapper

    return decorator


@contextmanager
def timed_block(name: str):
    """Same bookkeeping as `timed`, for a block inside a function."""
    started = time.perf_counter()
    ok = False
    try:
        yield
        ok = True
    finally:
        _record(name, started, ok)


# =============================================================================
# Global Instances
# =============================================================================

logger = StructuredLogger(level=get_settings().log_level)

metrics = MetricsCollector()


# =============================================================================
# Domain Events
# =============================================================================

def log_chat_request(user_id: int, message_length: int) -> None:
    logger.info("Chat request", user=user_id, msg_length=message_length)
    metrics.increment("chat.requests")


def log_quota_exceeded(user_id: int, limit_type: str, tier: str) -> None:
    logger.warning("Quota exceeded", user=user_id, limit_type=limit_type, tier=tier)
    metrics.increment("quota.exceeded", tags={"limit_type": limit_type, "tier": tier})


def log_payment_event(event: str, order_id: str, **fields) -> None:
    """Payment lifecycle: created, verified, failed."""
    logger.info(f"Payment {event}", order_id=order_id, **fields)
    metrics.increment("payments.events", tags={"event": event})


def log_ai_call(endpoint: str, duration_ms: float, cached: bool = False) -> None:
    logger.debug("Gemini API call", endpoint=endpoint, cached=cached, duration_ms=f"{duration_ms:.2f}")
    metrics.increment("ai.calls", tags={"cached": str(cached).lower()})
    if not cached:
        metrics.timing("ai.latency", duration_ms)
