"""
Usage reporting across all limit-type capabilities.
"""

import asyncio
import math
from datetime import datetime, timezone
from typing import List, Optional

from menu_shared.logging import get_logger
from ..persistence.base import EntitlementStore
from .counter import ResourceCounter
from .resolver import QuotaResolver
from .models import (
    CAPABILITY_RESOURCE_KINDS, CapabilityKey, FeatureType, LimitStatus, parse_organization_id
)


def usage_percent(current_count: int, limit: int) -> int:
    """Rounded share of the limit in use, capped at 100; 0 when unlimited or zero."""
    if limit <= 0:
        return 0
    # halves round up
    return math.floor(min(100, current_count / limit * 100) + 0.5)


class UsageReporter:
    """Builds the usage dashboard for an organization."""

    def __init__(self, store: EntitlementStore, counter: ResourceCounter, resolver: QuotaResolver):
        self.store = store
        self.counter = counter
        self.resolver = resolver
        self.logger = get_logger("entitlements.limits.usage")

    async def all_statuses(self, organization_id: str, now: Optional[datetime] = None) -> List[LimitStatus]:
        """
        One entry per limit-type capability of the organization's plan.

        Boolean features are excluded. Capabilities without a countable
        resource (languages, retention days, export formats, AI tokens)
        report a count of zero.
        """
        organization_id = parse_organization_id(organization_id)
        now = now or datetime.now(timezone.utc)
        entitlements = await self.store.fetch_plan_entitlements(
            organization_id, feature_type=FeatureType.LIMIT
        )

        keys: List[CapabilityKey] = []
        for entitlement in entitlements:
            try:
                key = CapabilityKey(entitlement.capability_key)
            except ValueError:
                self.logger.warning(
                    "Skipping unknown limit capability",
                    organization_id=organization_id,
                    capability_key=entitlement.capability_key
                )
                continue
            if key not in keys:
                keys.append(key)

        if not keys:
            return []

        return list(await asyncio.gather(*(self._status(organization_id, key, now) for key in keys)))

    async def _status(self, organization_id: str, key: CapabilityKey, now: datetime) -> LimitStatus:
        kind = CAPABILITY_RESOURCE_KINDS.get(key)
        if kind is not None:
            current_count, resolution = await asyncio.gather(
                self.counter.count(organization_id, kind),
                self.resolver.resolve(organization_id, key, now=now)
            )
        else:
            current_count = 0
            resolution = await self.resolver.resolve(organization_id, key, now=now)

        return LimitStatus(
            capability_key=key.value,
            current_count=current_count,
            limit=resolution.limit,
            is_unlimited=resolution.is_unlimited,
            usage_percent=usage_percent(current_count, resolution.limit),
            source=resolution.source,
            plan_name=resolution.plan_name
        )
