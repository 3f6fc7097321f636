"""
Resource counting for limit checks.
"""

from typing import Union

from menu_shared.logging import get_logger
from ..persistence.base import EntitlementStore
from .models import ResourceKind, parse_organization_id, parse_resource_kind


class ResourceCounter:
    """Counts the resources an organization currently owns."""

    def __init__(self, store: EntitlementStore):
        self.store = store
        self.logger = get_logger("entitlements.limits.counter")

    async def count(self, organization_id: str, kind: Union[str, ResourceKind]) -> int:
        """
        Live count of ``kind`` for the organization.

        Malformed organization ids and unknown kinds are rejected before the
        store is touched. Store failures propagate as ``StoreAccessError``;
        they are never reported as zero.
        """
        organization_id = parse_organization_id(organization_id)
        resource_kind = parse_resource_kind(kind)
        count = await self.store.count_resources(organization_id, resource_kind)
        self.logger.debug(
            "Resources counted",
            organization_id=organization_id,
            resource_kind=resource_kind.value,
            count=count
        )
        return count
