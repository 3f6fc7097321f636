"""
Public service-request (waiter call) write path.
"""

import re
from datetime import datetime, timezone
from typing import Any, Optional

from menu_shared.errors import NotFoundError, StoreAccessError, ValidationError
from menu_shared.logging import bind_request_context, get_logger
from menu_shared.metrics import MetricsCollector
from ..messages import MessageCatalog
from ..persistence.base import ServiceRequestStore
from ..ratelimit.gate import CooldownGate
from ..ratelimit.models import GateOutcome
from .models import (
    ServiceRequestOutcome, ServiceRequestStatus, ServiceRequestType, TableStatus
)

QR_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE
)

DEFAULT_NOTES_MAX_LENGTH = 500


class ServiceRequestHandler:
    """Creates service requests for tables, one per cooldown window."""

    def __init__(self, store: ServiceRequestStore, gate: CooldownGate,
                 messages: Optional[MessageCatalog] = None,
                 notes_max_length: int = DEFAULT_NOTES_MAX_LENGTH,
                 metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.gate = gate
        self.messages = messages or MessageCatalog()
        self.notes_max_length = notes_max_length
        self.metrics = metrics
        self.logger = get_logger("entitlements.service_requests")

    async def create(self, table_qr_uuid: Any, request_type: Any = None, notes: Any = None,
                     now: Optional[datetime] = None,
                     locale: Optional[str] = None) -> ServiceRequestOutcome:
        """
        Validate, admit through the cooldown gate, record the request and
        flag the table as needing service.

        Invalid input raises ``ValidationError``, an unknown table raises
        ``NotFoundError`` and store failures raise ``StoreAccessError``.
        Inactive tables and rate-limited calls are returned as outcomes.
        Once admitted, the cooldown window is consumed even if the insert
        fails afterwards.
        """
        qr_uuid = self._validate_qr_uuid(table_qr_uuid, locale)
        kind = self._validate_request_type(request_type, locale)
        cleaned_notes = self._clean_notes(notes, locale)
        now = now or datetime.now(timezone.utc)

        table = await self.store.fetch_table_by_qr(qr_uuid)
        if table is None:
            self._record(kind, "not_found")
            raise NotFoundError(
                self.messages.render("service_request.table_not_found", locale),
                details={"table_id": qr_uuid}
            )

        bind_request_context(organization_id=table.organization_id, table_id=table.id)
        decision = await self.gate.admit(table, now=now)

        if decision.outcome == GateOutcome.SUBJECT_INACTIVE:
            self._record(kind, ServiceRequestStatus.TABLE_INACTIVE.value)
            return ServiceRequestOutcome(
                status=ServiceRequestStatus.TABLE_INACTIVE,
                message=self.messages.render("service_request.table_inactive", locale),
                table_number=table.table_number
            )

        if decision.outcome == GateOutcome.RATE_LIMITED:
            self._record(kind, ServiceRequestStatus.RATE_LIMITED.value)
            return ServiceRequestOutcome(
                status=ServiceRequestStatus.RATE_LIMITED,
                message=self.messages.render(
                    "service_request.wait", locale, seconds=decision.retry_after_seconds
                ),
                table_number=table.table_number,
                retry_after_seconds=decision.retry_after_seconds
            )

        try:
            request_id = await self.store.insert_service_request(
                table.organization_id, table.id, kind, cleaned_notes
            )
        except StoreAccessError:
            self._record(kind, "failed")
            raise

        status_updated = True
        try:
            await self.store.mark_table_status(table.id, TableStatus.SERVICE_NEEDED)
        except StoreAccessError as e:
            status_updated = False
            self.logger.warning(
                "Service request recorded but table status not updated",
                request_id=request_id,
                table_id=table.id,
                operation=e.operation
            )

        self._record(kind, ServiceRequestStatus.CREATED.value)
        self.logger.info(
            "Service request created",
            request_id=request_id,
            organization_id=table.organization_id,
            table_number=table.table_number,
            request_type=kind.value,
            notes=cleaned_notes
        )

        return ServiceRequestOutcome(
            status=ServiceRequestStatus.CREATED,
            message="",
            request_id=request_id,
            table_number=table.table_number,
            table_status_updated=status_updated
        )

    def _validate_qr_uuid(self, value: Any, locale: Optional[str]) -> str:
        if not value or not isinstance(value, str):
            raise ValidationError(self.messages.render("service_request.table_required", locale))

        qr_uuid = value.strip()
        if not QR_UUID_PATTERN.match(qr_uuid):
            raise ValidationError(
                self.messages.render("service_request.invalid_table_id", locale),
                details={"table_id": qr_uuid}
            )
        return qr_uuid.lower()

    def _validate_request_type(self, value: Any, locale: Optional[str]) -> ServiceRequestType:
        if value is None:
            return ServiceRequestType.WAITER_CALL
        try:
            return ServiceRequestType(value)
        except ValueError:
            raise ValidationError(
                self.messages.render("service_request.invalid_request_type", locale),
                details={"request_type": str(value)}
            )

    def _clean_notes(self, value: Any, locale: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValidationError(
                self.messages.render("service_request.invalid_body", locale),
                details={"field": "notes"}
            )
        return value.strip()[:self.notes_max_length] or None

    def _record(self, kind: ServiceRequestType, outcome: str):
        if self.metrics:
            self.metrics.increment_counter(
                "service_requests_total", request_type=kind.value, outcome=outcome
            )
