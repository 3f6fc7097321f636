"""
PostgreSQL persistence layer for Entitlements Service.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional, List, Dict

import asyncpg

from menu_shared.logging import get_logger
from menu_shared.errors import StoreAccessError
from menu_shared.metrics import MetricsCollector
from ..limits.models import Override, PlanEntitlement, ResourceKind, FeatureType
from ..ratelimit.models import CooldownAttempt
from ..service_requests.models import RestaurantTable, ServiceRequestType, TableStatus

_DRIVER_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)

# Count queries by kind; table names never come from callers.
_COUNT_QUERIES: Dict[ResourceKind, str] = {
    ResourceKind.CATEGORIES: "SELECT COUNT(*) FROM categories WHERE organization_id = $1::uuid",
    ResourceKind.PRODUCTS: "SELECT COUNT(*) FROM products WHERE organization_id = $1::uuid",
    ResourceKind.RESTAURANT_TABLES: "SELECT COUNT(*) FROM restaurant_tables WHERE organization_id = $1::uuid",
}

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS organizations (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name TEXT NOT NULL,
        slug TEXT UNIQUE NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS features (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        key TEXT UNIQUE NOT NULL,
        name TEXT NOT NULL,
        type TEXT NOT NULL CHECK (type IN ('boolean', 'limit')),
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS plans (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name TEXT NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS plan_features (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        plan_id UUID NOT NULL REFERENCES plans(id) ON DELETE CASCADE,
        feature_id UUID NOT NULL REFERENCES features(id) ON DELETE CASCADE,
        value_boolean BOOLEAN,
        value_limit INT,
        UNIQUE (plan_id, feature_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS subscriptions (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
        plan_id UUID NOT NULL REFERENCES plans(id) ON DELETE RESTRICT,
        status TEXT NOT NULL CHECK (status IN ('active', 'past_due', 'cancelled', 'trialing', 'paused')),
        valid_until TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS organization_feature_overrides (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
        feature_id UUID NOT NULL REFERENCES features(id) ON DELETE CASCADE,
        override_value BOOLEAN NOT NULL,
        value_limit INT,
        reason TEXT,
        expires_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (organization_id, feature_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS categories (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
        name TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS products (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
        category_id UUID REFERENCES categories(id) ON DELETE SET NULL,
        name TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS restaurant_tables (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
        table_number TEXT NOT NULL,
        qr_uuid UUID UNIQUE NOT NULL DEFAULT gen_random_uuid(),
        current_status TEXT NOT NULL DEFAULT 'empty'
            CHECK (current_status IN ('empty', 'occupied', 'service_needed')),
        last_ping_at TIMESTAMPTZ,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        UNIQUE (organization_id, table_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS service_requests (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
        table_id UUID NOT NULL REFERENCES restaurant_tables(id) ON DELETE CASCADE,
        request_type TEXT NOT NULL DEFAULT 'waiter_call'
            CHECK (request_type IN ('waiter_call', 'bill_request', 'other')),
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'acknowledged', 'completed', 'cancelled')),
        notes TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE OR REPLACE VIEW v_organization_features AS
    SELECT
        s.organization_id,
        f.key AS feature_key,
        f.type AS feature_type,
        pf.value_boolean,
        pf.value_limit,
        p.id AS plan_id,
        p.name AS plan_name,
        s.created_at AS subscription_started_at
    FROM subscriptions s
    JOIN plans p ON p.id = s.plan_id
    JOIN plan_features pf ON pf.plan_id = s.plan_id
    JOIN features f ON f.id = pf.feature_id
    WHERE s.status = 'active'
    """,
    "CREATE INDEX IF NOT EXISTS idx_subscriptions_org_active ON subscriptions(organization_id, status) WHERE status = 'active'",
    "CREATE INDEX IF NOT EXISTS idx_feature_overrides_org ON organization_feature_overrides(organization_id)",
    "CREATE INDEX IF NOT EXISTS idx_categories_org ON categories(organization_id)",
    "CREATE INDEX IF NOT EXISTS idx_products_org ON products(organization_id)",
    "CREATE INDEX IF NOT EXISTS idx_restaurant_tables_org ON restaurant_tables(organization_id)",
    "CREATE INDEX IF NOT EXISTS idx_service_requests_org_status ON service_requests(organization_id, status, created_at DESC)",
]


class PostgreSQLStore:
    """PostgreSQL store for overrides, plan entitlements, counts and tables."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10,
                 command_timeout: float = 30.0, metrics: Optional[MetricsCollector] = None):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.metrics = metrics
        self.logger = get_logger("entitlements.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self, create_schema: bool = True):
        """Start the connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )
        except _DRIVER_ERRORS as e:
            self._record_failure("start", str(e))
            raise StoreAccessError("start") from e

        if create_schema:
            await self.create_schema()

        self.logger.info("PostgreSQL store started")

    async def stop(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL store stopped")

    async def create_schema(self):
        """Create tables and the plan-entitlement view if missing."""
        pool = self._require_pool("create_schema")
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    for statement in SCHEMA_STATEMENTS:
                        await conn.execute(statement)
        except _DRIVER_ERRORS as e:
            self._record_failure("create_schema", str(e))
            raise StoreAccessError("create_schema") from e

    async def fetch_overrides(self, organization_id: str, now: datetime,
                              capability_key: Optional[str] = None) -> List[Override]:
        """Unexpired overrides for an organization, optionally for one key."""
        pool = self._require_pool("fetch_overrides")
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT o.organization_id, f.key AS feature_key, o.override_value,
                           o.value_limit, o.expires_at, o.reason
                    FROM organization_feature_overrides o
                    JOIN features f ON f.id = o.feature_id
                    WHERE o.organization_id = $1::uuid
                      AND ($2::text IS NULL OR f.key = $2)
                      AND (o.expires_at IS NULL OR o.expires_at > $3)
                    ORDER BY o.created_at DESC
                """, organization_id, capability_key, now)
        except _DRIVER_ERRORS as e:
            self._record_failure("fetch_overrides", str(e))
            raise StoreAccessError("fetch_overrides") from e

        return self._convert_rows("fetch_overrides", rows, self._row_to_override)

    async def fetch_plan_entitlements(self, organization_id: str,
                                      capability_key: Optional[str] = None,
                                      feature_type: Optional[FeatureType] = None) -> List[PlanEntitlement]:
        """Entitlements of the organization's active plan(s), newest subscription first."""
        pool = self._require_pool("fetch_plan_entitlements")
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT organization_id, feature_key, feature_type, value_boolean,
                           value_limit, plan_id, plan_name, subscription_started_at
                    FROM v_organization_features
                    WHERE organization_id = $1::uuid
                      AND ($2::text IS NULL OR feature_key = $2)
                      AND ($3::text IS NULL OR feature_type = $3)
                    ORDER BY subscription_started_at DESC, feature_key
                """, organization_id, capability_key, feature_type.value if feature_type else None)
        except _DRIVER_ERRORS as e:
            self._record_failure("fetch_plan_entitlements", str(e))
            raise StoreAccessError("fetch_plan_entitlements") from e

        return self._convert_rows("fetch_plan_entitlements", rows, self._row_to_entitlement)

    async def count_resources(self, organization_id: str, kind: ResourceKind) -> int:
        """Live count of one resource kind. No rows is a count of zero."""
        pool = self._require_pool("count_resources")
        try:
            async with pool.acquire() as conn:
                count = await conn.fetchval(_COUNT_QUERIES[kind], organization_id)
        except _DRIVER_ERRORS as e:
            self._record_failure("count_resources", str(e))
            raise StoreAccessError("count_resources") from e

        if count is None:
            return 0
        if not isinstance(count, int) or count < 0:
            self._record_failure("count_resources", f"malformed count {count!r}")
            raise StoreAccessError("count_resources")
        return count

    async def fetch_table_by_qr(self, qr_uuid: str) -> Optional[RestaurantTable]:
        """Look a table up by the UUID printed in its QR code."""
        pool = self._require_pool("fetch_table_by_qr")
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow("""
                    SELECT id, organization_id, table_number, qr_uuid, current_status,
                           last_ping_at, is_active
                    FROM restaurant_tables
                    WHERE qr_uuid = $1::uuid
                """, qr_uuid)
        except _DRIVER_ERRORS as e:
            self._record_failure("fetch_table_by_qr", str(e))
            raise StoreAccessError("fetch_table_by_qr") from e

        if row is None:
            return None
        return self._convert_rows("fetch_table_by_qr", [row], self._row_to_table)[0]

    async def try_acquire_cooldown(self, table_id: str, now: datetime, min_interval: timedelta) -> CooldownAttempt:
        """
        Conditionally stamp ``last_ping_at`` in a single statement.

        The UPDATE's WHERE clause is re-checked against the latest row version
        when a concurrent update commits first, so at most one caller wins a
        window. The outer SELECT reads the pre-update snapshot.
        """
        pool = self._require_pool("try_acquire_cooldown")
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow("""
                    WITH admitted AS (
                        UPDATE restaurant_tables
                        SET last_ping_at = $2
                        WHERE id = $1::uuid
                          AND is_active
                          AND (last_ping_at IS NULL OR last_ping_at <= $2 - $3::interval)
                        RETURNING id
                    )
                    SELECT t.last_ping_at, EXISTS (SELECT 1 FROM admitted) AS acquired
                    FROM restaurant_tables t
                    WHERE t.id = $1::uuid
                """, table_id, now, min_interval)
        except _DRIVER_ERRORS as e:
            self._record_failure("try_acquire_cooldown", str(e))
            raise StoreAccessError("try_acquire_cooldown") from e

        if row is None:
            return CooldownAttempt(acquired=False)
        return CooldownAttempt(acquired=bool(row["acquired"]), last_admitted_at=row["last_ping_at"])

    async def insert_service_request(self, organization_id: str, table_id: str,
                                     request_type: ServiceRequestType, notes: Optional[str]) -> str:
        """Insert a pending service request."""
        pool = self._require_pool("insert_service_request")
        try:
            async with pool.acquire() as conn:
                request_id = await conn.fetchval("""
                    INSERT INTO service_requests (organization_id, table_id, request_type, status, notes)
                    VALUES ($1::uuid, $2::uuid, $3, 'pending', $4)
                    RETURNING id
                """, organization_id, table_id, request_type.value, notes)
        except _DRIVER_ERRORS as e:
            self._record_failure("insert_service_request", str(e))
            raise StoreAccessError("insert_service_request") from e

        self.logger.info("Service request inserted", request_id=str(request_id), table_id=table_id)
        return str(request_id)

    async def mark_table_status(self, table_id: str, status: TableStatus) -> None:
        """Update a table's current status."""
        pool = self._require_pool("mark_table_status")
        try:
            async with pool.acquire() as conn:
                await conn.execute("""
                    UPDATE restaurant_tables SET current_status = $2 WHERE id = $1::uuid
                """, table_id, status.value)
        except _DRIVER_ERRORS as e:
            self._record_failure("mark_table_status", str(e))
            raise StoreAccessError("mark_table_status") from e

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except _DRIVER_ERRORS:
            return False

    def _require_pool(self, operation: str) -> asyncpg.Pool:
        if self.pool is None:
            self._record_failure(operation, "pool not started")
            raise StoreAccessError(operation)
        return self.pool

    def _record_failure(self, operation: str, error: str):
        self.logger.error("Store access failed", operation=operation, error=error)
        if self.metrics:
            self.metrics.increment_counter("store_errors_total", operation=operation)

    def _convert_rows(self, operation: str, rows, converter):
        try:
            return [converter(row) for row in rows]
        except (KeyError, TypeError, ValueError) as e:
            self._record_failure(operation, f"malformed row: {e}")
            raise StoreAccessError(operation) from e

    def _row_to_override(self, row) -> Override:
        limit = row['value_limit']
        return Override(
            organization_id=str(row['organization_id']),
            capability_key=row['feature_key'],
            override_value=bool(row['override_value']),
            limit=int(limit) if limit is not None else None,
            expires_at=row['expires_at'],
            reason=row['reason']
        )

    def _row_to_entitlement(self, row) -> PlanEntitlement:
        limit = row['value_limit']
        return PlanEntitlement(
            organization_id=str(row['organization_id']),
            capability_key=row['feature_key'],
            feature_type=FeatureType(row['feature_type']),
            plan_name=row['plan_name'],
            limit=int(limit) if limit is not None else None,
            enabled=row['value_boolean'],
            plan_id=str(row['plan_id']),
            subscription_started_at=row['subscription_started_at']
        )

    def _row_to_table(self, row) -> RestaurantTable:
        return RestaurantTable(
            id=str(row['id']),
            organization_id=str(row['organization_id']),
            is_active=bool(row['is_active']),
            last_admitted_at=row['last_ping_at'],
            table_number=row['table_number'],
            qr_uuid=str(row['qr_uuid']),
            current_status=TableStatus(row['current_status'])
        )
