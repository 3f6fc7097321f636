"""
Data models for limit resolution and admission decisions.
"""

import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Union, List

from pydantic import BaseModel, Field

from menu_shared.errors import ValidationError

# Limit value meaning "no cap"; any negative limit is treated the same way.
UNLIMITED = -1


class CapabilityKey(str, Enum):
    """Quota-bearing capability keys."""
    LIMIT_CATEGORIES = "limit_categories"
    LIMIT_PRODUCTS = "limit_products"
    LIMIT_TABLES = "limit_tables"
    LIMIT_LANGUAGES = "limit_languages"
    LIMIT_RETENTION_DAYS = "limit_retention_days"
    LIMIT_EXPORT_FORMATS = "limit_export_formats"
    AI_TOKEN_QUOTA = "ai_token_quota"


class ResourceKind(str, Enum):
    """Countable resource kinds."""
    CATEGORIES = "categories"
    PRODUCTS = "products"
    RESTAURANT_TABLES = "restaurant_tables"


class LimitSource(str, Enum):
    """Where an effective limit came from."""
    OVERRIDE = "override"
    PLAN = "plan"
    NONE = "none"


class FeatureType(str, Enum):
    """Plan feature types."""
    LIMIT = "limit"
    BOOLEAN = "boolean"


CAPABILITY_RESOURCE_KINDS: Dict[CapabilityKey, ResourceKind] = {
    CapabilityKey.LIMIT_CATEGORIES: ResourceKind.CATEGORIES,
    CapabilityKey.LIMIT_PRODUCTS: ResourceKind.PRODUCTS,
    CapabilityKey.LIMIT_TABLES: ResourceKind.RESTAURANT_TABLES,
}

RESOURCE_CAPABILITY_KEYS: Dict[ResourceKind, CapabilityKey] = {
    kind: key for key, kind in CAPABILITY_RESOURCE_KINDS.items()
}


def parse_organization_id(value: str) -> str:
    """Canonical form of an organization UUID; anything else is invalid input."""
    try:
        return str(uuid.UUID(str(value).strip()))
    except ValueError:
        raise ValidationError(
            "Invalid organization ID",
            details={"organization_id": str(value)}
        )


def parse_capability_key(value: Union[str, CapabilityKey]) -> CapabilityKey:
    """Parse a capability key, rejecting anything outside the vocabulary."""
    try:
        return CapabilityKey(value)
    except ValueError:
        raise ValidationError(
            "Unknown capability key",
            details={"capability_key": str(value)}
        )


def parse_resource_kind(value: Union[str, ResourceKind]) -> ResourceKind:
    """Parse a resource kind, rejecting anything that is not countable."""
    try:
        return ResourceKind(value)
    except ValueError:
        raise ValidationError(
            "Unknown resource kind",
            details={"resource_kind": str(value)}
        )


def capability_for_kind(kind: Union[str, ResourceKind]) -> CapabilityKey:
    """Capability key whose limit governs a resource kind."""
    return RESOURCE_CAPABILITY_KEYS[parse_resource_kind(kind)]


@dataclass(frozen=True)
class Override:
    """Organization-specific replacement of a plan value."""
    organization_id: str
    capability_key: str
    override_value: bool = True
    limit: Optional[int] = None
    expires_at: Optional[datetime] = None
    reason: Optional[str] = None

    def is_active_at(self, now: datetime) -> bool:
        """An override is inert once its expiry has passed."""
        return self.expires_at is None or self.expires_at > now


@dataclass(frozen=True)
class PlanEntitlement:
    """A capability granted by the organization's active plan."""
    organization_id: str
    capability_key: str
    feature_type: FeatureType
    plan_name: str
    limit: Optional[int] = None
    enabled: Optional[bool] = None
    plan_id: Optional[str] = None
    subscription_started_at: Optional[datetime] = None


@dataclass(frozen=True)
class QuotaResolution:
    """
    Effective limit for an (organization, capability) pair.

    Exactly one of override, plan or none produced it, recorded in
    ``source``. Build instances through the ``from_*`` constructors.
    """
    limit: int
    source: LimitSource
    plan_name: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def is_unlimited(self) -> bool:
        return self.limit < 0

    @classmethod
    def from_override(cls, override: Override) -> "QuotaResolution":
        return cls(limit=override.limit, source=LimitSource.OVERRIDE, expires_at=override.expires_at)

    @classmethod
    def from_plan(cls, entitlement: PlanEntitlement) -> "QuotaResolution":
        limit = entitlement.limit if entitlement.limit is not None else 0
        return cls(limit=limit, source=LimitSource.PLAN, plan_name=entitlement.plan_name)

    @classmethod
    def no_entitlement(cls) -> "QuotaResolution":
        return cls(limit=0, source=LimitSource.NONE)


@dataclass(frozen=True)
class LimitCheckResult:
    """Admission decision for adding one or more items."""
    can_add: bool
    current_count: int
    limit: int
    is_unlimited: bool
    remaining: Union[int, float]
    source: LimitSource
    message: str
    plan_name: Optional[str] = None


@dataclass(frozen=True)
class LimitStatus:
    """Usage of one limit-type capability."""
    capability_key: str
    current_count: int
    limit: int
    is_unlimited: bool
    usage_percent: int
    source: LimitSource
    plan_name: Optional[str] = None


@dataclass(frozen=True)
class PermissionResult:
    """Access decision for a feature, boolean or limit-type."""
    allowed: bool
    source: LimitSource
    limit: Optional[int] = None
    plan_name: Optional[str] = None
    expires_at: Optional[datetime] = None


def _finite(value: Union[int, float]) -> Optional[int]:
    return None if math.isinf(value) else int(value)


class LimitCheckRequest(BaseModel):
    """Request model for a single-item limit check."""
    organization_id: str = Field(..., min_length=1, description="Organization ID")
    capability_key: str = Field(..., description="Capability key, e.g. limit_products")
    resource_kind: str = Field(..., description="Countable resource kind, e.g. products")


class BulkLimitCheckRequest(BaseModel):
    """Request model for a bulk limit check."""
    organization_id: str = Field(..., min_length=1, description="Organization ID")
    resource_kind: str = Field(..., description="Countable resource kind")
    count: int = Field(..., description="Number of items to add")
    capability_key: Optional[str] = Field(None, description="Defaults to the kind's capability")


class LimitCheckResponse(BaseModel):
    """Response model for limit checks. ``remaining`` is null when unlimited."""
    can_add: bool
    current_count: int
    limit: int
    is_unlimited: bool
    remaining: Optional[int]
    source: LimitSource
    plan_name: Optional[str] = None
    message: str

    @classmethod
    def from_result(cls, result: LimitCheckResult) -> "LimitCheckResponse":
        return cls(
            can_add=result.can_add,
            current_count=result.current_count,
            limit=result.limit,
            is_unlimited=result.is_unlimited,
            remaining=_finite(result.remaining),
            source=result.source,
            plan_name=result.plan_name,
            message=result.message
        )


class LimitStatusResponse(BaseModel):
    """Response model for one usage entry."""
    capability_key: str
    current_count: int
    limit: int
    is_unlimited: bool
    usage_percent: int
    source: LimitSource
    plan_name: Optional[str] = None


class UsageResponse(BaseModel):
    """Response model for an organization's usage dashboard."""
    organization_id: str
    limits: List[LimitStatusResponse]


class CapacityResponse(BaseModel):
    """Response model for remaining capacity."""
    organization_id: str
    resource_kind: ResourceKind
    remaining: Optional[int] = Field(None, description="Null when unlimited")
    is_unlimited: bool


class PermissionCheckRequest(BaseModel):
    """Request model for a feature permission check."""
    organization_id: str = Field(..., min_length=1)
    feature_key: str = Field(..., min_length=1)


class BatchPermissionCheckRequest(BaseModel):
    """Request model for checking several features at once."""
    organization_id: str = Field(..., min_length=1)
    feature_keys: List[str] = Field(..., min_length=1)


class FeatureLimitResponse(BaseModel):
    """Response model for a feature's numeric limit."""
    organization_id: str
    feature_key: str
    limit: int


class PermissionResponse(BaseModel):
    """Response model for a feature permission check."""
    allowed: bool
    source: LimitSource
    limit: Optional[int] = None
    plan_name: Optional[str] = None
    expires_at: Optional[datetime] = None
