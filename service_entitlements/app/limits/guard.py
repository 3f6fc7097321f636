"""
Admission decisions for adding countable resources.
"""

import asyncio
import math
from datetime import datetime
from typing import Optional, Union

from menu_shared.errors import ValidationError
from menu_shared.logging import get_logger
from menu_shared.metrics import MetricsCollector
from ..messages import MessageCatalog
from .counter import ResourceCounter
from .resolver import QuotaResolver
from .models import (
    CapabilityKey, LimitCheckResult, LimitSource, QuotaResolution, ResourceKind,
    capability_for_kind, parse_capability_key, parse_organization_id, parse_resource_kind
)


def remaining_capacity(current_count: int, limit: int) -> Union[int, float]:
    """Items that can still be added; ``math.inf`` when unlimited."""
    if limit < 0:
        return math.inf
    return max(0, limit - current_count)


def can_add(current_count: int, limit: int) -> bool:
    """True when one more item fits."""
    return limit < 0 or current_count < limit


def can_add_bulk(current_count: int, limit: int, count: int) -> bool:
    """True when ``count`` more items fit."""
    return limit < 0 or remaining_capacity(current_count, limit) >= count


class LimitGuard:
    """Combines resource counts and resolved quotas into admission decisions."""

    def __init__(self, counter: ResourceCounter, resolver: QuotaResolver,
                 messages: Optional[MessageCatalog] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.counter = counter
        self.resolver = resolver
        self.messages = messages or MessageCatalog()
        self.metrics = metrics
        self.logger = get_logger("entitlements.limits.guard")

    async def check_limit(self, organization_id: str, capability_key: Union[str, CapabilityKey],
                          resource_kind: Union[str, ResourceKind], locale: Optional[str] = None,
                          now: Optional[datetime] = None) -> LimitCheckResult:
        """
        Decide whether one more item of ``resource_kind`` may be added.

        Read-only: nothing is reserved, so two concurrent callers may both be
        admitted for the last slot.
        """
        organization_id = parse_organization_id(organization_id)
        key = parse_capability_key(capability_key)
        kind = parse_resource_kind(resource_kind)

        result = await self._evaluate(organization_id, key, kind, locale, now)
        self._record(key, result, mode="single")
        return result

    async def validate_bulk_add(self, organization_id: str, resource_kind: Union[str, ResourceKind],
                                count: int, capability_key: Union[str, CapabilityKey, None] = None,
                                locale: Optional[str] = None,
                                now: Optional[datetime] = None) -> LimitCheckResult:
        """Decide whether ``count`` items may be added at once."""
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise ValidationError(
                "Bulk count must be a positive integer",
                details={"count": count}
            )

        organization_id = parse_organization_id(organization_id)
        kind = parse_resource_kind(resource_kind)
        key = parse_capability_key(capability_key) if capability_key else capability_for_kind(kind)
        single = await self._evaluate(organization_id, key, kind, locale, now)

        allowed = can_add_bulk(single.current_count, single.limit, count)
        if allowed or single.source == LimitSource.NONE:
            message = single.message
        else:
            message = self.messages.render(
                "limit.bulk_shortfall", locale, requested=count, remaining=single.remaining
            )

        self.logger.info(
            "Bulk limit check",
            organization_id=organization_id,
            capability_key=key.value,
            requested=count,
            remaining=single.remaining,
            can_add=allowed
        )

        result = LimitCheckResult(
            can_add=allowed,
            current_count=single.current_count,
            limit=single.limit,
            is_unlimited=single.is_unlimited,
            remaining=single.remaining,
            source=single.source,
            message=message,
            plan_name=single.plan_name
        )
        self._record(key, result, mode="bulk")
        return result

    async def can_add_entity(self, organization_id: str, resource_kind: Union[str, ResourceKind]) -> bool:
        """Quick check for the capability governing ``resource_kind``."""
        kind = parse_resource_kind(resource_kind)
        result = await self.check_limit(organization_id, capability_for_kind(kind), kind)
        return result.can_add

    async def get_remaining_capacity(self, organization_id: str,
                                     resource_kind: Union[str, ResourceKind]) -> Union[int, float]:
        """Remaining capacity for ``resource_kind``; ``math.inf`` when unlimited."""
        kind = parse_resource_kind(resource_kind)
        result = await self.check_limit(organization_id, capability_for_kind(kind), kind)
        return result.remaining

    async def _evaluate(self, organization_id: str, key: CapabilityKey, kind: ResourceKind,
                        locale: Optional[str], now: Optional[datetime]) -> LimitCheckResult:
        if self.metrics:
            with self.metrics.time_operation("limit_check_duration_seconds"):
                current_count, resolution = await self._gather(organization_id, key, kind, now)
        else:
            current_count, resolution = await self._gather(organization_id, key, kind, now)
        return self._build_result(current_count, resolution, locale)

    async def _gather(self, organization_id: str, key: CapabilityKey, kind: ResourceKind,
                      now: Optional[datetime]):
        return await asyncio.gather(
            self.counter.count(organization_id, kind),
            self.resolver.resolve(organization_id, key, now=now)
        )

    def _build_result(self, current_count: int, resolution: QuotaResolution,
                      locale: Optional[str]) -> LimitCheckResult:
        limit = resolution.limit
        allowed = can_add(current_count, limit)
        remaining = remaining_capacity(current_count, limit)

        if resolution.source == LimitSource.NONE:
            message = self.messages.render("limit.no_entitlement", locale)
        elif resolution.is_unlimited:
            message = self.messages.render("limit.unlimited", locale)
        elif allowed:
            message = self.messages.render("limit.remaining", locale, remaining=remaining)
        else:
            message = self.messages.render("limit.exceeded", locale)

        return LimitCheckResult(
            can_add=allowed,
            current_count=current_count,
            limit=limit,
            is_unlimited=resolution.is_unlimited,
            remaining=remaining,
            source=resolution.source,
            message=message,
            plan_name=resolution.plan_name
        )

    def _record(self, key: CapabilityKey, result: LimitCheckResult, mode: str):
        if self.metrics:
            self.metrics.increment_counter(
                "limit_checks_total",
                capability=key.value,
                decision="allow" if result.can_add else "deny",
                mode=mode
            )
