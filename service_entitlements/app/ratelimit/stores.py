"""
Cooldown store backends.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from menu_shared.errors import StoreAccessError
from menu_shared.logging import get_logger
from menu_shared.metrics import MetricsCollector
from ..persistence.postgres import PostgreSQLStore
from .models import CooldownAttempt

_REDIS_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class PostgresCooldownStore:
    """Cooldown backed by the table's ``last_ping_at`` column."""

    def __init__(self, store: PostgreSQLStore):
        self.store = store

    async def try_acquire(self, subject_id: str, now: datetime, min_interval: timedelta) -> CooldownAttempt:
        return await self.store.try_acquire_cooldown(subject_id, now, min_interval)


class RedisCooldownStore:
    """
    Cooldown backed by expiring Redis keys.

    ``SET key now NX PX interval`` succeeds only when no admission happened
    within the interval; the key's value is the last admission time.
    """

    KEY_PREFIX = "cooldown:"

    def __init__(self, redis_url: str, metrics: Optional[MetricsCollector] = None):
        self.redis_url = redis_url
        self.metrics = metrics
        self.logger = get_logger("entitlements.ratelimit.redis")
        self.redis: Optional[redis.Redis] = None

    async def start(self):
        """Connect to Redis."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
            await self.redis.ping()
        except _REDIS_ERRORS as e:
            self._record_failure("start", str(e))
            raise StoreAccessError("start") from e

        self.logger.info("Redis cooldown store started")

    async def stop(self):
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis cooldown store stopped")

    async def health_check(self) -> bool:
        if self.redis is None:
            return False
        try:
            return bool(await self.redis.ping())
        except _REDIS_ERRORS:
            return False

    async def try_acquire(self, subject_id: str, now: datetime, min_interval: timedelta) -> CooldownAttempt:
        if self.redis is None:
            self._record_failure("try_acquire_cooldown", "client not started")
            raise StoreAccessError("try_acquire_cooldown")

        key = f"{self.KEY_PREFIX}{subject_id}"
        interval_ms = int(min_interval.total_seconds() * 1000)
        try:
            acquired = await self.redis.set(key, now.isoformat(), nx=True, px=interval_ms)
            if acquired:
                return CooldownAttempt(acquired=True, last_admitted_at=None)
            previous = await self.redis.get(key)
        except _REDIS_ERRORS as e:
            self._record_failure("try_acquire_cooldown", str(e))
            raise StoreAccessError("try_acquire_cooldown") from e

        return CooldownAttempt(acquired=False, last_admitted_at=self._parse(previous))

    def _parse(self, value: Optional[str]) -> Optional[datetime]:
        # key may have expired between SET and GET
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            self.logger.warning("Unreadable cooldown timestamp", value=value)
            return None

    def _record_failure(self, operation: str, error: str):
        self.logger.error("Store access failed", operation=operation, error=error)
        if self.metrics:
            self.metrics.increment_counter("store_errors_total", operation=operation)
