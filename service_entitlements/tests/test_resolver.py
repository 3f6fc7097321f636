"""
Unit tests for quota resolution.
"""

import pytest
from datetime import timedelta

from menu_shared.errors import StoreAccessError, ValidationError
from service_entitlements.app.limits.models import LimitSource, Override, UNLIMITED
from service_entitlements.app.limits.resolver import QuotaResolver

from conftest import ORG_ID, T0, plan_limit


class TestQuotaResolver:
    """Test cases for QuotaResolver."""

    @pytest.fixture
    def resolver(self, store):
        return QuotaResolver(store)

    @pytest.mark.asyncio
    async def test_plan_limit_applies_without_override(self, resolver, store, now):
        store.entitlements.append(plan_limit("limit_products", 20))

        resolution = await resolver.resolve(ORG_ID, "limit_products", now=now)

        assert resolution.limit == 20
        assert resolution.source == LimitSource.PLAN
        assert resolution.plan_name == "Pro"
        assert resolution.is_unlimited is False

    @pytest.mark.asyncio
    async def test_unexpired_override_wins_over_plan(self, resolver, store, now):
        store.entitlements.append(plan_limit("limit_products", 20))
        store.overrides.append(Override(ORG_ID, "limit_products", limit=50, expires_at=now + timedelta(days=1)))

        resolution = await resolver.resolve(ORG_ID, "limit_products", now=now)

        assert resolution.limit == 50
        assert resolution.source == LimitSource.OVERRIDE
        assert resolution.expires_at == now + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_unlimited_override(self, resolver, store, now):
        store.entitlements.append(plan_limit("limit_products", 20))
        store.overrides.append(Override(ORG_ID, "limit_products", limit=UNLIMITED))

        resolution = await resolver.resolve(ORG_ID, "limit_products", now=now)

        assert resolution.is_unlimited is True
        assert resolution.source == LimitSource.OVERRIDE

    @pytest.mark.asyncio
    async def test_expired_override_is_ignored(self, resolver, store, now):
        store.entitlements.append(plan_limit("limit_products", 20))
        store.overrides.append(Override(ORG_ID, "limit_products", limit=500, expires_at=now - timedelta(seconds=1)))

        resolution = await resolver.resolve(ORG_ID, "limit_products", now=now)

        assert resolution.limit == 20
        assert resolution.source == LimitSource.PLAN

    @pytest.mark.asyncio
    async def test_override_expiring_exactly_now_is_ignored(self, resolver, store, now):
        store.overrides.append(Override(ORG_ID, "limit_products", limit=500, expires_at=now))

        resolution = await resolver.resolve(ORG_ID, "limit_products", now=now)

        assert resolution.source == LimitSource.NONE

    @pytest.mark.asyncio
    async def test_override_without_limit_falls_through_to_plan(self, resolver, store, now):
        store.entitlements.append(plan_limit("limit_categories", 5))
        store.overrides.append(Override(ORG_ID, "limit_categories", override_value=True, limit=None))

        resolution = await resolver.resolve(ORG_ID, "limit_categories", now=now)

        assert resolution.limit == 5
        assert resolution.source == LimitSource.PLAN

    @pytest.mark.asyncio
    async def test_no_plan_means_no_entitlement(self, resolver, now):
        resolution = await resolver.resolve(ORG_ID, "ai_token_quota", now=now)

        assert resolution.limit == 0
        assert resolution.source == LimitSource.NONE
        assert resolution.plan_name is None

    @pytest.mark.asyncio
    async def test_null_plan_limit_resolves_to_zero(self, resolver, store, now):
        store.entitlements.append(plan_limit("limit_languages", None))

        resolution = await resolver.resolve(ORG_ID, "limit_languages", now=now)

        assert resolution.limit == 0
        assert resolution.source == LimitSource.PLAN

    @pytest.mark.asyncio
    async def test_other_organizations_overrides_do_not_apply(self, resolver, store, now):
        store.entitlements.append(plan_limit("limit_products", 20))
        store.overrides.append(Override("someone-else", "limit_products", limit=UNLIMITED))

        resolution = await resolver.resolve(ORG_ID, "limit_products", now=now)

        assert resolution.limit == 20

    @pytest.mark.asyncio
    async def test_multiple_active_plans_use_newest_subscription(self, resolver, store, now):
        store.entitlements.append(plan_limit("limit_products", 20, plan_name="Pro", plan_id="p1",
                                             started_at=T0 - timedelta(days=60)))
        store.entitlements.append(plan_limit("limit_products", 100, plan_name="Business", plan_id="p2",
                                             started_at=T0 - timedelta(days=1)))

        resolution = await resolver.resolve(ORG_ID, "limit_products", now=now)

        assert resolution.limit == 100
        assert resolution.plan_name == "Business"

    @pytest.mark.asyncio
    async def test_unknown_capability_rejected_before_store_access(self, resolver, store, now):
        with pytest.raises(ValidationError):
            await resolver.resolve(ORG_ID, "limit_unicorns", now=now)

        assert store.calls == []

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, resolver, store, now):
        store.fail_operations.add("fetch_overrides")

        with pytest.raises(StoreAccessError):
            await resolver.resolve(ORG_ID, "limit_products", now=now)
