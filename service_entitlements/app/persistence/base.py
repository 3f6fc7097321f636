"""
Store interface consumed by the limits engine and the service-request path.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Protocol

from ..limits.models import Override, PlanEntitlement, ResourceKind, FeatureType
from ..ratelimit.models import CooldownAttempt
from ..service_requests.models import RestaurantTable, ServiceRequestType, TableStatus


class EntitlementStore(Protocol):
    """
    Queryable store of entitlement data.

    Implementations raise ``StoreAccessError`` on any failure. An empty
    result is never a failure.
    """

    async def fetch_overrides(self, organization_id: str, now: datetime,
                              capability_key: Optional[str] = None) -> List[Override]:
        """Overrides for the organization that have not expired at ``now``."""

    async def fetch_plan_entitlements(self, organization_id: str,
                                      capability_key: Optional[str] = None,
                                      feature_type: Optional[FeatureType] = None) -> List[PlanEntitlement]:
        """Entitlements from active subscriptions, newest subscription first."""

    async def count_resources(self, organization_id: str, kind: ResourceKind) -> int:
        """Live count of resources of ``kind`` owned by the organization."""


class ServiceRequestStore(Protocol):
    """Store operations used by the service-request write path."""

    async def fetch_table_by_qr(self, qr_uuid: str) -> Optional[RestaurantTable]:
        """Table carrying the given QR UUID, or None."""

    async def insert_service_request(self, organization_id: str, table_id: str,
                                     request_type: ServiceRequestType, notes: Optional[str]) -> str:
        """Record a pending service request and return its id."""

    async def mark_table_status(self, table_id: str, status: TableStatus) -> None:
        """Set the table's current status."""


class CooldownStore(Protocol):
    """Backend performing the cooldown compare-and-set."""

    async def try_acquire(self, subject_id: str, now: datetime, min_interval: timedelta) -> CooldownAttempt:
        """
        Atomically record ``now`` as the subject's last admission if at least
        ``min_interval`` has passed since the previous one.
        """
