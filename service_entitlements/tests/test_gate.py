"""
Unit tests for the cooldown gate.
"""

import asyncio
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

from menu_shared.errors import StoreAccessError
from service_entitlements.app.ratelimit.gate import CooldownGate
from service_entitlements.app.ratelimit.models import CooldownAttempt, GateOutcome

from conftest import T0, TABLE_QR, make_table


class TestRetryAfter:
    """Test cases for CooldownGate.retry_after."""

    @pytest.mark.parametrize("elapsed,expected", [
        (timedelta(seconds=29), 1),
        (timedelta(seconds=29, milliseconds=1), 1),
        (timedelta(seconds=10), 20),
        (timedelta(seconds=10, milliseconds=500), 20),
        (timedelta(0), 30),
    ])
    def test_rounds_up_remaining_seconds(self, elapsed, expected):
        interval = timedelta(seconds=30)
        assert CooldownGate.retry_after(T0, T0 + elapsed, interval) == expected

    def test_missing_timestamp_means_full_interval(self):
        assert CooldownGate.retry_after(None, T0, timedelta(seconds=30)) == 30

    def test_future_timestamp_counts_as_no_time_elapsed(self):
        assert CooldownGate.retry_after(T0 + timedelta(seconds=5), T0, timedelta(seconds=30)) == 30

    def test_stale_timestamp_means_full_interval(self):
        assert CooldownGate.retry_after(T0 - timedelta(minutes=5), T0, timedelta(seconds=30)) == 30


class TestCooldownGate:
    """Test cases for CooldownGate."""

    @pytest.fixture
    def gate(self, store):
        return CooldownGate(store, timedelta(seconds=30))

    @pytest.fixture
    def table(self, store):
        table = make_table()
        store.tables[TABLE_QR] = table
        return table

    @pytest.mark.asyncio
    async def test_first_request_is_admitted(self, gate, table, now):
        decision = await gate.admit(table, now=now)

        assert decision.admitted is True
        assert decision.admitted_at == now
        assert table.last_admitted_at == now

    @pytest.mark.asyncio
    async def test_request_inside_window_is_rejected(self, gate, table, now):
        await gate.admit(table, now=now)

        decision = await gate.admit(table, now=now + timedelta(seconds=29))

        assert decision.outcome == GateOutcome.RATE_LIMITED
        assert decision.retry_after_seconds == 1

    @pytest.mark.asyncio
    async def test_request_at_window_edge_is_admitted(self, gate, table, now):
        await gate.admit(table, now=now)

        decision = await gate.admit(table, now=now + timedelta(seconds=30))

        assert decision.admitted is True

    @pytest.mark.asyncio
    async def test_rejection_does_not_move_the_window(self, gate, table, now):
        await gate.admit(table, now=now)
        await gate.admit(table, now=now + timedelta(seconds=20))

        decision = await gate.admit(table, now=now + timedelta(seconds=30))

        assert decision.admitted is True

    @pytest.mark.asyncio
    async def test_inactive_subject_is_distinct_from_rate_limit(self, gate, store, now):
        table = make_table(is_active=False)
        store.tables[TABLE_QR] = table

        decision = await gate.admit(table, now=now)

        assert decision.outcome == GateOutcome.SUBJECT_INACTIVE
        assert decision.retry_after_seconds is None
        assert "try_acquire_cooldown" not in store.calls

    @pytest.mark.asyncio
    async def test_concurrent_requests_admit_exactly_one(self, gate, table, now):
        decisions = await asyncio.gather(*(
            gate.admit(table, now=now + timedelta(milliseconds=i)) for i in range(5)
        ))

        assert sum(d.admitted for d in decisions) == 1
        assert all(d.retry_after_seconds == 30 for d in decisions if not d.admitted)

    @pytest.mark.asyncio
    async def test_lost_race_without_timestamp_waits_full_interval(self, now):
        store = MagicMock()
        store.try_acquire = AsyncMock(return_value=CooldownAttempt(acquired=False))
        gate = CooldownGate(store, timedelta(seconds=30))

        decision = await gate.admit(make_table(), now=now)

        assert decision.retry_after_seconds == 30

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, gate, store, table, now):
        store.fail_operations.add("try_acquire_cooldown")

        with pytest.raises(StoreAccessError):
            await gate.admit(table, now=now)

    @pytest.mark.asyncio
    async def test_outcomes_are_counted(self, store, table, now):
        metrics = MagicMock()
        gate = CooldownGate(store, timedelta(seconds=30), metrics=metrics)

        await gate.admit(table, now=now)

        metrics.increment_counter.assert_called_once_with("rate_limit_decisions_total", outcome="admitted")

    def test_rejects_non_positive_interval(self, store):
        with pytest.raises(ValueError):
            CooldownGate(store, timedelta(0))
