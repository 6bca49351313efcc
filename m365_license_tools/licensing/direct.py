"""
Direct Assignment Collector
Enumerates users holding a SKU and classifies each hold as direct or
group-inherited using the user's licenseAssignmentStates.
"""

from __future__ import annotations

import logging
from typing import Any

from ..config import USER_SELECT_FIELDS
from ..graph.client import GraphClient
from .models import LicenseAssignment, SubscribedSku

logger = logging.getLogger("m365_license_tools.licensing.direct")


def classify_user(
    user: dict[str, Any],
    sku: SubscribedSku,
    include_inherited: bool = False,
) -> list[LicenseAssignment]:
    """
    Build assignment records for one Graph user object.

    A user holding the SKU both directly and through groups produces one
    direct record, plus one record per group when include_inherited is set.
    """
    target = sku.sku_id.lower()
    records = []
    seen_direct = False

    for state in user.get("licenseAssignmentStates") or []:
        if (state.get("skuId") or "").lower() != target:
            continue
        group_id = state.get("assignedByGroup") or ""
        direct = not group_id
        if direct:
            if seen_direct:
                continue
            seen_direct = True
        elif not include_inherited:
            continue

        records.append(LicenseAssignment(
            display_name=user.get("displayName") or "",
            user_principal_name=user.get("userPrincipalName") or "",
            user_id=user.get("id") or "",
            sku_id=target,
            sku_part_number=sku.sku_part_number,
            assigned_directly=direct,
            assigned_by_group=group_id,
            state=state.get("state") or "",
        ))

    return records


class DirectAssignmentCollector:
    """Streams all users and keeps those holding the SKU."""

    def __init__(
        self,
        graph: GraphClient,
        sku: SubscribedSku,
        include_inherited: bool = False,
        exclude_disabled: bool = False,
    ):
        self.graph = graph
        self.sku = sku
        self.include_inherited = include_inherited
        self.exclude_disabled = exclude_disabled
        self.users_scanned = 0

    async def collect(self) -> list[LicenseAssignment]:
        logger.info(f"Scanning users for SKU {self.sku.label}...")
        records: list[LicenseAssignment] = []

        async for user in self.graph.list_users_with_licenses(USER_SELECT_FIELDS):
            self.users_scanned += 1
            if self.exclude_disabled and user.get("accountEnabled") is False:
                continue
            records.extend(classify_user(user, self.sku, self.include_inherited))

        records.sort(key=lambda r: (r.display_name.lower(), r.user_principal_name.lower()))
        direct = sum(1 for r in records if r.assigned_directly)
        logger.info(
            f"Scanned {self.users_scanned} users: {direct} direct, "
            f"{len(records) - direct} inherited assignment(s) of {self.sku.label}"
        )
        return records
