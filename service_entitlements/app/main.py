"""
Entitlements service for the e-menu platform.
"""

import math
from dataclasses import asdict
from datetime import timedelta
from typing import Optional

from fastapi import Header, Request
from fastapi.responses import JSONResponse

from menu_shared.base_service import BaseService
from menu_shared.errors import MenuPlatformException, RateLimitError, StoreAccessError, ValidationError
from menu_shared.observability import get_observability_manager
from menu_shared.tracing import trace_function

from .limits.counter import ResourceCounter
from .limits.guard import LimitGuard
from .limits.models import (
    BatchPermissionCheckRequest, BulkLimitCheckRequest, CapacityResponse, FeatureLimitResponse,
    LimitCheckRequest, LimitCheckResponse, LimitStatusResponse, PermissionCheckRequest,
    PermissionResponse, UsageResponse, parse_resource_kind
)
from .limits.permissions import FeatureAccess
from .limits.resolver import QuotaResolver
from .limits.usage import UsageReporter
from .messages import MessageCatalog
from .persistence.base import CooldownStore, EntitlementStore, ServiceRequestStore
from .persistence.postgres import PostgreSQLStore
from .ratelimit.gate import CooldownGate
from .ratelimit.stores import PostgresCooldownStore, RedisCooldownStore
from .service_requests.handler import ServiceRequestHandler
from .service_requests.models import (
    ServiceRequestData, ServiceRequestResponse, ServiceRequestStatus
)


class EntitlementsService(BaseService):
    """Entitlements service implementation."""

    def __init__(self):
        super().__init__("entitlements", 8011)

        self.observability = get_observability_manager(
            "entitlements",
            log_level=self.config.log_level,
            otel_exporter=self.config.otel_exporter,
            enable_console=self.config.enable_console_tracing,
            enable_tracing=self.config.enable_tracing,
            json_logs=self.config.log_json
        )

        self.messages = MessageCatalog(self.config.default_locale)
        self.persistence = PostgreSQLStore(
            self.config.postgres_dsn,
            min_size=self.config.postgres_min_pool_size,
            max_size=self.config.postgres_max_pool_size,
            command_timeout=self.config.postgres_command_timeout,
            metrics=self.metrics
        )

        self.redis_cooldown: Optional[RedisCooldownStore] = None
        if self.config.cooldown_backend == "redis":
            self.redis_cooldown = RedisCooldownStore(self.config.redis_url, metrics=self.metrics)
            cooldown_store = self.redis_cooldown
        else:
            cooldown_store = PostgresCooldownStore(self.persistence)

        self.wire_components(self.persistence, self.persistence, cooldown_store)
        self._setup_entitlements_routes()

    def wire_components(self, entitlement_store: EntitlementStore,
                        service_request_store: ServiceRequestStore,
                        cooldown_store: CooldownStore):
        """Build the decision components on top of the given stores."""
        self.counter = ResourceCounter(entitlement_store)
        self.resolver = QuotaResolver(entitlement_store)
        self.guard = LimitGuard(self.counter, self.resolver, self.messages, self.metrics)
        self.usage = UsageReporter(entitlement_store, self.counter, self.resolver)
        self.features = FeatureAccess(entitlement_store)
        self.gate = CooldownGate(
            cooldown_store,
            min_interval=timedelta(seconds=self.config.service_request_cooldown_seconds),
            metrics=self.metrics
        )
        self.service_requests = ServiceRequestHandler(
            service_request_store,
            self.gate,
            messages=self.messages,
            notes_max_length=self.config.service_request_notes_max_length,
            metrics=self.metrics
        )

    def _setup_entitlements_routes(self):
        """Set up entitlements-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "entitlements",
                "message": "e-menu platform - Entitlements Service",
                "version": "1.0.0",
                "capabilities": ["limits", "features", "service_requests"],
                "cooldown_backend": self.config.cooldown_backend
            }

        @self.app.post("/limits/check", response_model=LimitCheckResponse)
        @trace_function("limits_check")
        async def check_limit(request: LimitCheckRequest,
                              accept_language: Optional[str] = Header(None)):
            """Decide whether one more item may be added."""
            self.observability.trace_request(organization_id=request.organization_id)
            result = await self.guard.check_limit(
                request.organization_id,
                request.capability_key,
                request.resource_kind,
                locale=accept_language
            )
            self.observability.log_business_event(
                "limit_checked",
                organization_id=request.organization_id,
                capability_key=request.capability_key,
                can_add=result.can_add,
                source=result.source.value
            )
            return LimitCheckResponse.from_result(result)

        @self.app.post("/limits/bulk-check", response_model=LimitCheckResponse)
        @trace_function("limits_bulk_check")
        async def bulk_check_limit(request: BulkLimitCheckRequest,
                                   accept_language: Optional[str] = Header(None)):
            """Decide whether several items may be added at once."""
            self.observability.trace_request(organization_id=request.organization_id)
            result = await self.guard.validate_bulk_add(
                request.organization_id,
                request.resource_kind,
                request.count,
                capability_key=request.capability_key,
                locale=accept_language
            )
            return LimitCheckResponse.from_result(result)

        @self.app.get("/limits/{organization_id}/usage", response_model=UsageResponse)
        async def get_usage(organization_id: str):
            """Usage of every limit-type capability."""
            self.observability.trace_request(organization_id=organization_id)
            statuses = await self.usage.all_statuses(organization_id)
            return UsageResponse(
                organization_id=organization_id,
                limits=[LimitStatusResponse(**asdict(status)) for status in statuses]
            )

        @self.app.get("/limits/{organization_id}/capacity/{resource_kind}", response_model=CapacityResponse)
        async def get_capacity(organization_id: str, resource_kind: str):
            """Remaining capacity for one resource kind."""
            self.observability.trace_request(organization_id=organization_id)
            kind = parse_resource_kind(resource_kind)
            remaining = await self.guard.get_remaining_capacity(organization_id, kind)
            unlimited = math.isinf(remaining)
            return CapacityResponse(
                organization_id=organization_id,
                resource_kind=kind,
                remaining=None if unlimited else int(remaining),
                is_unlimited=unlimited
            )

        @self.app.post("/features/check", response_model=PermissionResponse)
        @trace_function("features_check")
        async def check_feature(request: PermissionCheckRequest):
            """Check access to one feature."""
            self.observability.trace_request(organization_id=request.organization_id)
            result = await self.features.check_permission(request.organization_id, request.feature_key)
            return PermissionResponse(**asdict(result))

        @self.app.post("/features/batch-check")
        async def batch_check_features(request: BatchPermissionCheckRequest):
            """Check access to several features."""
            self.observability.trace_request(organization_id=request.organization_id)
            results = await self.features.batch_check_permissions(
                request.organization_id, request.feature_keys
            )
            return {"organization_id": request.organization_id, "features": results}

        @self.app.get("/features/{organization_id}/limits/{feature_key}", response_model=FeatureLimitResponse)
        async def get_feature_limit(organization_id: str, feature_key: str):
            """Numeric limit of one feature, 0 when none applies."""
            self.observability.trace_request(organization_id=organization_id)
            limit = await self.features.get_feature_limit(organization_id, feature_key)
            return FeatureLimitResponse(
                organization_id=organization_id,
                feature_key=feature_key,
                limit=limit
            )

        @self.app.get("/features/{organization_id}")
        async def list_features(organization_id: str):
            """All features with their effective access."""
            self.observability.trace_request(organization_id=organization_id)
            features = await self.features.get_all_features(organization_id)
            return {
                "organization_id": organization_id,
                "features": {
                    key: PermissionResponse(**asdict(result)).model_dump(mode="json")
                    for key, result in features.items()
                }
            }

        @self.app.post("/service-requests")
        @trace_function("service_request_create")
        async def create_service_request(request: Request):
            """
            Public waiter-call endpoint, reached by scanning a table's QR code.

            Body: ``{tableId, requestType?, notes?}``.
            """
            locale = request.headers.get("Accept-Language")

            try:
                body = await request.json()
            except ValueError:
                body = None
            if not isinstance(body, dict):
                return self._service_request_error(
                    400, self.messages.render("service_request.invalid_body", locale)
                )

            try:
                outcome = await self.service_requests.create(
                    body.get("tableId"),
                    request_type=body.get("requestType"),
                    notes=body.get("notes"),
                    locale=locale
                )
                if outcome.status == ServiceRequestStatus.TABLE_INACTIVE:
                    raise ValidationError(outcome.message, details={"table_number": outcome.table_number})
                if outcome.status == ServiceRequestStatus.RATE_LIMITED:
                    raise RateLimitError(outcome.retry_after_seconds, outcome.message)
            except StoreAccessError as e:
                self.observability.log_error(
                    "store_access",
                    "Service request failed",
                    operation=e.operation,
                    cause=repr(e.__cause__)
                )
                return self._service_request_error(
                    e.status_code, self.messages.render("service_request.failed", locale)
                )
            except MenuPlatformException as e:
                headers = None
                if isinstance(e, RateLimitError):
                    headers = {"Retry-After": str(e.retry_after_seconds)}
                return self._service_request_error(e.status_code, e.message, headers=headers)

            self.observability.log_business_event(
                "service_request_created",
                request_id=outcome.request_id,
                table_number=outcome.table_number,
                table_status_updated=outcome.table_status_updated
            )
            response = ServiceRequestResponse(
                success=True,
                data=ServiceRequestData(
                    request_id=outcome.request_id,
                    table_number=outcome.table_number,
                    table_status_updated=outcome.table_status_updated
                )
            )
            return JSONResponse(content=response.model_dump(by_alias=True, exclude_none=True))

    def _service_request_error(self, status_code: int, message: str,
                               headers: Optional[dict] = None) -> JSONResponse:
        response = ServiceRequestResponse(success=False, error=message)
        return JSONResponse(
            status_code=status_code,
            content=response.model_dump(exclude_none=True),
            headers=headers
        )

    async def _check_dependencies(self):
        """Check entitlements service dependencies."""
        dependencies = {}

        dependencies["postgres"] = "ok" if await self.persistence.health_check() else "error"

        if self.redis_cooldown is not None:
            dependencies["redis"] = "ok" if await self.redis_cooldown.health_check() else "error"

        return dependencies

    async def start(self):
        """Start entitlements service components."""
        await self.persistence.start()
        if self.redis_cooldown is not None:
            await self.redis_cooldown.start()

        self.logger.info(
            "Entitlements service started",
            cooldown_backend=self.config.cooldown_backend,
            cooldown_seconds=self.config.service_request_cooldown_seconds
        )

    async def stop(self):
        """Stop entitlements service components."""
        await self.persistence.stop()
        if self.redis_cooldown is not None:
            await self.redis_cooldown.stop()

        self.logger.info("Entitlements service stopped")


def create_app():
    """Create entitlements service application."""
    service = EntitlementsService()
    return service.app


if __name__ == "__main__":
    service = EntitlementsService()
    service.run()
