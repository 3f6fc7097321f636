"""
Quota resolution: override, then plan, then no entitlement.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from menu_shared.logging import get_logger
from ..persistence.base import EntitlementStore
from .models import CapabilityKey, QuotaResolution, parse_capability_key, parse_organization_id


class QuotaResolver:
    """Resolves the effective limit of a capability for an organization."""

    def __init__(self, store: EntitlementStore):
        self.store = store
        self.logger = get_logger("entitlements.limits.resolver")

    async def resolve(self, organization_id: str, capability_key: Union[str, CapabilityKey],
                      now: Optional[datetime] = None) -> QuotaResolution:
        """
        Resolve the effective limit.

        1. An unexpired override carrying a limit wins.
        2. Otherwise the active plan's entitlement; a null plan limit is 0.
        3. Otherwise no entitlement (limit 0, deny by default).

        An override without a limit only toggles access and does not change
        the quota, so resolution falls through to the plan.
        """
        organization_id = parse_organization_id(organization_id)
        key = parse_capability_key(capability_key)
        now = now or datetime.now(timezone.utc)

        overrides = await self.store.fetch_overrides(organization_id, now, key.value)
        for override in overrides:
            if override.capability_key == key.value and override.limit is not None \
                    and override.is_active_at(now):
                return QuotaResolution.from_override(override)

        entitlements = [
            e for e in await self.store.fetch_plan_entitlements(organization_id, key.value)
            if e.capability_key == key.value
        ]
        if not entitlements:
            return QuotaResolution.no_entitlement()

        if len({e.plan_id or e.plan_name for e in entitlements}) > 1:
            self.logger.warning(
                "Multiple active plans grant capability; using newest subscription",
                organization_id=organization_id,
                capability_key=key.value,
                plans=[e.plan_name for e in entitlements]
            )
            entitlements.sort(
                key=lambda e: e.subscription_started_at or datetime.min.replace(tzinfo=timezone.utc),
                reverse=True
            )

        return QuotaResolution.from_plan(entitlements[0])
