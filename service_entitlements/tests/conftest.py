"""
Shared fixtures and an in-memory store for Entitlements Service tests.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

import pytest

from menu_shared.errors import StoreAccessError
from service_entitlements.app.limits.models import (
    FeatureType, Override, PlanEntitlement, ResourceKind
)
from service_entitlements.app.ratelimit.models import CooldownAttempt
from service_entitlements.app.service_requests.models import (
    RestaurantTable, ServiceRequestType, TableStatus
)

ORG_ID = "11111111-1111-4111-8111-111111111111"
TABLE_QR = "22222222-2222-4222-a222-222222222222"
TABLE_ID = "33333333-3333-4333-9333-333333333333"
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class InMemoryStore:
    """
    Dict-backed store implementing the entitlement, service-request and
    cooldown protocols.

    Operations named in ``fail_operations`` raise ``StoreAccessError``.
    """

    def __init__(self):
        self.overrides: List[Override] = []
        self.entitlements: List[PlanEntitlement] = []
        self.counts: Dict[Tuple[str, ResourceKind], int] = {}
        self.tables: Dict[str, RestaurantTable] = {}
        self.service_requests: List[dict] = []
        self.fail_operations: Set[str] = set()
        self.calls: List[str] = []
        self._lock = asyncio.Lock()

    def _enter(self, operation: str):
        self.calls.append(operation)
        if operation in self.fail_operations:
            raise StoreAccessError(operation) from ConnectionError("store offline")

    async def fetch_overrides(self, organization_id: str, now: datetime,
                              capability_key: Optional[str] = None) -> List[Override]:
        self._enter("fetch_overrides")
        return [
            o for o in self.overrides
            if o.organization_id == organization_id
            and (capability_key is None or o.capability_key == capability_key)
            and o.is_active_at(now)
        ]

    async def fetch_plan_entitlements(self, organization_id: str,
                                      capability_key: Optional[str] = None,
                                      feature_type: Optional[FeatureType] = None) -> List[PlanEntitlement]:
        self._enter("fetch_plan_entitlements")
        rows = [
            e for e in self.entitlements
            if e.organization_id == organization_id
            and (capability_key is None or e.capability_key == capability_key)
            and (feature_type is None or e.feature_type == feature_type)
        ]
        return sorted(rows, key=lambda e: e.subscription_started_at or T0 - timedelta(days=3650), reverse=True)

    async def count_resources(self, organization_id: str, kind: ResourceKind) -> int:
        self._enter("count_resources")
        return self.counts.get((organization_id, kind), 0)

    async def fetch_table_by_qr(self, qr_uuid: str) -> Optional[RestaurantTable]:
        self._enter("fetch_table_by_qr")
        return self.tables.get(qr_uuid)

    async def try_acquire(self, subject_id: str, now: datetime, min_interval: timedelta) -> CooldownAttempt:
        self._enter("try_acquire_cooldown")
        async with self._lock:
            table = self._table_by_id(subject_id)
            if table is None:
                return CooldownAttempt(acquired=False)
            previous = table.last_admitted_at
            # yield inside the critical section so racing callers really interleave
            await asyncio.sleep(0)
            if table.is_active and (previous is None or now - previous >= min_interval):
                table.last_admitted_at = now
                return CooldownAttempt(acquired=True, last_admitted_at=previous)
            return CooldownAttempt(acquired=False, last_admitted_at=previous)

    async def insert_service_request(self, organization_id: str, table_id: str,
                                     request_type: ServiceRequestType, notes: Optional[str]) -> str:
        self._enter("insert_service_request")
        request_id = str(uuid.uuid4())
        self.service_requests.append({
            "id": request_id,
            "organization_id": organization_id,
            "table_id": table_id,
            "request_type": request_type,
            "status": "pending",
            "notes": notes,
        })
        return request_id

    async def mark_table_status(self, table_id: str, status: TableStatus) -> None:
        self._enter("mark_table_status")
        table = self._table_by_id(table_id)
        if table is not None:
            table.current_status = status

    def _table_by_id(self, table_id: str) -> Optional[RestaurantTable]:
        for table in self.tables.values():
            if table.id == table_id:
                return table
        return None


def plan_limit(key: str, limit: Optional[int], organization_id: str = ORG_ID,
               plan_name: str = "Pro", plan_id: str = "plan-pro",
               started_at: Optional[datetime] = None) -> PlanEntitlement:
    return PlanEntitlement(
        organization_id=organization_id,
        capability_key=key,
        feature_type=FeatureType.LIMIT,
        plan_name=plan_name,
        limit=limit,
        plan_id=plan_id,
        subscription_started_at=started_at or T0 - timedelta(days=30)
    )


def plan_flag(key: str, enabled: Optional[bool], organization_id: str = ORG_ID,
              plan_name: str = "Pro", plan_id: str = "plan-pro") -> PlanEntitlement:
    return PlanEntitlement(
        organization_id=organization_id,
        capability_key=key,
        feature_type=FeatureType.BOOLEAN,
        plan_name=plan_name,
        enabled=enabled,
        plan_id=plan_id,
        subscription_started_at=T0 - timedelta(days=30)
    )


def make_table(is_active: bool = True, last_admitted_at: Optional[datetime] = None,
               table_number: str = "A1", qr_uuid: str = TABLE_QR, table_id: str = TABLE_ID) -> RestaurantTable:
    return RestaurantTable(
        id=table_id,
        organization_id=ORG_ID,
        is_active=is_active,
        last_admitted_at=last_admitted_at,
        table_number=table_number,
        qr_uuid=qr_uuid
    )


@pytest.fixture
def store():
    """Empty in-memory store."""
    return InMemoryStore()


@pytest.fixture
def now():
    """Fixed evaluation time."""
    return T0
