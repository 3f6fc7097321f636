"""
Unit tests for the service-request write path.
"""

import pytest
from datetime import timedelta
from unittest.mock import MagicMock

from menu_shared.errors import NotFoundError, StoreAccessError, ValidationError
from service_entitlements.app.messages import MessageCatalog
from service_entitlements.app.ratelimit.gate import CooldownGate
from service_entitlements.app.service_requests.handler import ServiceRequestHandler
from service_entitlements.app.service_requests.models import (
    ServiceRequestStatus, ServiceRequestType, TableStatus
)

from conftest import ORG_ID, TABLE_ID, TABLE_QR, make_table


class TestServiceRequestHandler:
    """Test cases for ServiceRequestHandler."""

    @pytest.fixture
    def metrics(self):
        return MagicMock()

    @pytest.fixture
    def handler(self, store, metrics):
        gate = CooldownGate(store, timedelta(seconds=30))
        return ServiceRequestHandler(store, gate, MessageCatalog("tr"), notes_max_length=500, metrics=metrics)

    @pytest.fixture
    def table(self, store):
        table = make_table(table_number="B7")
        store.tables[TABLE_QR] = table
        return table

    @pytest.mark.asyncio
    async def test_creates_request_and_flags_table(self, handler, store, table, now):
        outcome = await handler.create(TABLE_QR, now=now)

        assert outcome.created is True
        assert outcome.table_number == "B7"
        assert outcome.table_status_updated is True
        assert table.current_status == TableStatus.SERVICE_NEEDED
        assert store.service_requests[0]["id"] == outcome.request_id
        assert store.service_requests[0]["organization_id"] == ORG_ID
        assert store.service_requests[0]["table_id"] == TABLE_ID
        assert store.service_requests[0]["request_type"] == ServiceRequestType.WAITER_CALL
        assert store.service_requests[0]["status"] == "pending"

    @pytest.mark.asyncio
    async def test_second_call_inside_window_is_rate_limited(self, handler, store, table, now):
        await handler.create(TABLE_QR, now=now)

        outcome = await handler.create(TABLE_QR, request_type="bill_request", now=now + timedelta(seconds=29))

        assert outcome.status == ServiceRequestStatus.RATE_LIMITED
        assert outcome.retry_after_seconds == 1
        assert outcome.message == "Lütfen 1 saniye bekleyin"
        assert len(store.service_requests) == 1

    @pytest.mark.asyncio
    async def test_call_after_window_is_created(self, handler, store, table, now):
        await handler.create(TABLE_QR, now=now)

        outcome = await handler.create(TABLE_QR, now=now + timedelta(seconds=30))

        assert outcome.created is True
        assert len(store.service_requests) == 2

    @pytest.mark.asyncio
    async def test_inactive_table_is_rejected_without_insert(self, handler, store, now):
        store.tables[TABLE_QR] = make_table(is_active=False)

        outcome = await handler.create(TABLE_QR, now=now)

        assert outcome.status == ServiceRequestStatus.TABLE_INACTIVE
        assert outcome.message == "Bu masa aktif değil"
        assert store.service_requests == []

    @pytest.mark.asyncio
    async def test_unknown_table_is_not_found(self, handler, now):
        with pytest.raises(NotFoundError) as exc_info:
            await handler.create(TABLE_QR, now=now)

        assert exc_info.value.message == "Masa bulunamadı"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [None, "", 42])
    async def test_missing_table_id_is_invalid(self, handler, store, value):
        with pytest.raises(ValidationError) as exc_info:
            await handler.create(value)

        assert exc_info.value.message == "Masa bilgisi (tableId) zorunludur"
        assert store.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [
        "not-a-uuid",
        "22222222-2222-6222-a222-222222222222",
        "22222222-2222-4222-c222-222222222222",
    ])
    async def test_malformed_table_id_is_invalid(self, handler, store, value):
        with pytest.raises(ValidationError) as exc_info:
            await handler.create(value)

        assert exc_info.value.message == "Geçersiz masa kimlik formatı"
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_table_id_is_trimmed_and_case_insensitive(self, handler, table, now):
        outcome = await handler.create(f"  {TABLE_QR.upper()} ", now=now)

        assert outcome.created is True

    @pytest.mark.asyncio
    async def test_unknown_request_type_is_invalid(self, handler, store, table):
        with pytest.raises(ValidationError):
            await handler.create(TABLE_QR, request_type="dessert_menu")

        assert store.calls == []

    @pytest.mark.asyncio
    async def test_notes_are_trimmed_and_truncated(self, handler, store, table, now):
        await handler.create(TABLE_QR, notes="   " + "x" * 600 + "  ", now=now)

        assert store.service_requests[0]["notes"] == "x" * 500

    @pytest.mark.asyncio
    async def test_blank_notes_are_dropped(self, handler, store, table, now):
        await handler.create(TABLE_QR, notes="   ", now=now)

        assert store.service_requests[0]["notes"] is None

    @pytest.mark.asyncio
    async def test_failed_status_update_is_surfaced(self, handler, store, table, now):
        store.fail_operations.add("mark_table_status")

        outcome = await handler.create(TABLE_QR, now=now)

        assert outcome.created is True
        assert outcome.table_status_updated is False
        assert len(store.service_requests) == 1

    @pytest.mark.asyncio
    async def test_failed_insert_propagates_and_keeps_window(self, handler, store, table, now):
        store.fail_operations.add("insert_service_request")

        with pytest.raises(StoreAccessError):
            await handler.create(TABLE_QR, now=now)

        store.fail_operations.clear()
        outcome = await handler.create(TABLE_QR, now=now + timedelta(seconds=5))
        assert outcome.status == ServiceRequestStatus.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_english_messages(self, handler, store, now):
        store.tables[TABLE_QR] = make_table(is_active=False)

        outcome = await handler.create(TABLE_QR, now=now, locale="en-US,en;q=0.9")

        assert outcome.message == "This table is not active"

    @pytest.mark.asyncio
    async def test_outcomes_are_counted(self, handler, metrics, table, now):
        await handler.create(TABLE_QR, request_type="bill_request", now=now)

        metrics.increment_counter.assert_called_with(
            "service_requests_total", request_type="bill_request", outcome="created"
        )
