"""
Entitlements Service package for the e-menu platform.

This package decides whether an organization may add countable resources
or use a feature, and admits public waiter calls per table. It provides:

- app.main: API surface for limit, feature and service-request calls and health.
- app.limits: Resource counting, quota resolution, admission decisions and usage.
- app.ratelimit: Cooldown gate and its PostgreSQL/Redis compare-and-set backends.
- app.service_requests: The public waiter-call write path.
- app.persistence: Store protocols and the asyncpg implementation.

Guidelines:
- Decisions are read-only and never cached; every check re-counts.
- Store failures surface as StoreAccessError, never as a deny or a zero.
- Keep decisions observable (metrics + logs).
"""
