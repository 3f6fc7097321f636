"""
Feature permission checks for boolean and limit-type features.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

from menu_shared.logging import get_logger
from ..persistence.base import EntitlementStore
from .models import (
    FeatureType, LimitSource, Override, PermissionResult, PlanEntitlement, parse_organization_id
)


def _plan_allows(entitlement: PlanEntitlement) -> bool:
    if entitlement.feature_type == FeatureType.BOOLEAN:
        return bool(entitlement.enabled)
    limit = entitlement.limit if entitlement.limit is not None else 0
    return limit < 0 or limit > 0


def _from_override(override: Override) -> PermissionResult:
    return PermissionResult(
        allowed=override.override_value,
        source=LimitSource.OVERRIDE,
        limit=override.limit,
        expires_at=override.expires_at
    )


def _from_plan(entitlement: PlanEntitlement) -> PermissionResult:
    return PermissionResult(
        allowed=_plan_allows(entitlement),
        source=LimitSource.PLAN,
        limit=entitlement.limit,
        plan_name=entitlement.plan_name
    )


class FeatureAccess:
    """Answers whether an organization may use a feature."""

    def __init__(self, store: EntitlementStore):
        self.store = store
        self.logger = get_logger("entitlements.limits.permissions")

    async def check_permission(self, organization_id: str, feature_key: str,
                               now: Optional[datetime] = None) -> PermissionResult:
        """
        An unexpired override decides outright. Otherwise the plan decides:
        boolean features by their flag, limit features when unlimited or
        above zero. No plan row means no access.
        """
        organization_id = parse_organization_id(organization_id)
        now = now or datetime.now(timezone.utc)

        overrides = await self.store.fetch_overrides(organization_id, now, feature_key)
        for override in overrides:
            if override.capability_key == feature_key and override.is_active_at(now):
                return _from_override(override)

        entitlements = [
            e for e in await self.store.fetch_plan_entitlements(organization_id, feature_key)
            if e.capability_key == feature_key
        ]
        if not entitlements:
            return PermissionResult(allowed=False, source=LimitSource.NONE)

        return _from_plan(entitlements[0])

    async def has_permission(self, organization_id: str, feature_key: str) -> bool:
        result = await self.check_permission(organization_id, feature_key)
        return result.allowed

    async def get_feature_limit(self, organization_id: str, feature_key: str) -> int:
        """Numeric limit of a feature; 0 when none applies."""
        result = await self.check_permission(organization_id, feature_key)
        return result.limit if result.limit is not None else 0

    async def batch_check_permissions(self, organization_id: str,
                                      feature_keys: List[str]) -> Dict[str, bool]:
        results = await asyncio.gather(
            *(self.has_permission(organization_id, key) for key in feature_keys)
        )
        return dict(zip(feature_keys, results))

    async def get_all_features(self, organization_id: str,
                               now: Optional[datetime] = None) -> Dict[str, PermissionResult]:
        """Every plan feature, with unexpired overrides laid on top."""
        organization_id = parse_organization_id(organization_id)
        now = now or datetime.now(timezone.utc)
        entitlements, overrides = await asyncio.gather(
            self.store.fetch_plan_entitlements(organization_id),
            self.store.fetch_overrides(organization_id, now)
        )

        features: Dict[str, PermissionResult] = {}
        for entitlement in entitlements:
            # newest subscription first; keep the first row per key
            features.setdefault(entitlement.capability_key, _from_plan(entitlement))

        for override in overrides:
            if override.is_active_at(now):
                features[override.capability_key] = _from_override(override)

        self.logger.debug(
            "Features listed",
            organization_id=organization_id,
            feature_count=len(features)
        )
        return features
