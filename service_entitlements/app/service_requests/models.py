"""
Data models for service requests.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..ratelimit.models import RateLimitedSubject


class ServiceRequestType(str, Enum):
    """Kinds of service a customer can ask for."""
    WAITER_CALL = "waiter_call"
    BILL_REQUEST = "bill_request"
    OTHER = "other"


class TableStatus(str, Enum):
    """Restaurant table states."""
    EMPTY = "empty"
    OCCUPIED = "occupied"
    SERVICE_NEEDED = "service_needed"


class ServiceRequestStatus(str, Enum):
    """Outcome of a service request attempt."""
    CREATED = "created"
    RATE_LIMITED = "rate_limited"
    TABLE_INACTIVE = "table_inactive"


@dataclass
class RestaurantTable(RateLimitedSubject):
    """A physical table, identified publicly by its QR UUID."""
    table_number: str = ""
    qr_uuid: Optional[str] = None
    current_status: TableStatus = TableStatus.EMPTY


@dataclass(frozen=True)
class ServiceRequestOutcome:
    """
    Result of creating a service request.

    ``table_status_updated`` is False when the request was recorded but
    flagging the table as ``service_needed`` failed.
    """
    status: ServiceRequestStatus
    message: str
    request_id: Optional[str] = None
    table_number: Optional[str] = None
    retry_after_seconds: Optional[int] = None
    table_status_updated: bool = False

    @property
    def created(self) -> bool:
        return self.status == ServiceRequestStatus.CREATED


class ServiceRequestData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(..., serialization_alias="requestId")
    table_number: str = Field(..., serialization_alias="tableNumber")
    table_status_updated: bool = Field(..., serialization_alias="tableStatusUpdated")


class ServiceRequestResponse(BaseModel):
    success: bool
    data: Optional[ServiceRequestData] = None
    error: Optional[str] = None
