"""
Test Module: test_observability.py
Description: Unit tests for the structured logger fields and timing metrics.
"""

import asyncio

import pytest

from services.observability import StructuredLogger, metrics, timed, timed_block


class TestStructuredLogger:
    def test_fields_and_context_are_rendered(self):
        log = StructuredLogger(name="expense-ai-test")
        log.set_context(env="test")

        assert log._render("Chat request", {"user": 7}) == "Chat request | env=test | user=7"

        log.clear_context()
        assert log._render("Plain", {}) == "Plain"


class TestTiming:
    def test_sync_success_and_error(self):
        @timed("unit.sync")
        def work(fail):
            if fail:
                raise ValueError("nope")
            return 3

        assert work(False) == 3
        with pytest.raises(ValueError):
            work(True)

        summary = metrics.get_summary()
        assert summary["counters"]["unit.sync.success"] == 1
        assert summary["counters"]["unit.sync.error"] == 1
        assert summary["timings"]["unit.sync"]["count"] == 2

    def test_async_wrapper_keeps_coroutine(self):
        @timed("unit.async")
        async def work():
            return "done"

        assert asyncio.iscoroutinefunction(work)
        assert asyncio.run(work()) == "done"
        assert metrics.get_summary()["counters"]["unit.async.success"] == 1

    def test_timed_block(self):
        with timed_block("unit.block"):
            pass

        assert metrics.get_summary()["counters"]["unit.block.success"] == 1

    def test_tagged_keys(self):
        metrics.increment("quota.exceeded", tags={"tier": "FREE", "limit_type": "AI_CHAT"})

        assert metrics.get_summary()["counters"] == {"quota.exceeded:limit_type=AI_CHAT,tier=FREE": 1}
