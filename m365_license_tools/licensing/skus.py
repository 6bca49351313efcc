"""
SKU catalog — resolves a license identifier (GUID or part number) to a SKU.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from ..graph.client import GraphClient
from .models import SubscribedSku

logger = logging.getLogger("m365_license_tools.licensing.skus")

GUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


class LicenseResolutionError(Exception):
    """Raised when a license identifier matches no subscribed SKU."""
    pass


def is_guid(value: str) -> bool:
    return bool(GUID_PATTERN.match(value.strip()))


class SkuCatalog:
    """Lookup of the tenant's subscribed SKUs by id and part number."""

    def __init__(self, skus: Iterable[SubscribedSku]):
        self.skus = list(skus)
        self._by_id = {s.sku_id.lower(): s for s in self.skus}
        self._by_part = {
            s.sku_part_number.lower(): s for s in self.skus if s.sku_part_number
        }

    @classmethod
    async def load(cls, graph: GraphClient) -> "SkuCatalog":
        raw = await graph.list_subscribed_skus()
        catalog = cls(SubscribedSku.from_graph(s) for s in raw)
        logger.info(f"Loaded {len(catalog.skus)} subscribed SKUs")
        return catalog

    def get(self, sku_id: str) -> Optional[SubscribedSku]:
        return self._by_id.get(sku_id.strip().lower())

    def resolve(self, identifier: str) -> SubscribedSku:
        """
        Resolve a GUID or part number, case-insensitively.

        A well-formed GUID that the tenant no longer subscribes to is still
        returned (without a part number) so stale assignments can be removed.
        """
        value = (identifier or "").strip()
        if not value:
            raise LicenseResolutionError("Empty license identifier")

        if is_guid(value):
            sku = self.get(value)
            if sku:
                return sku
            logger.warning(f"SKU {value} is not subscribed in this tenant; using it as-is")
            return SubscribedSku(sku_id=value.lower())

        sku = self._by_part.get(value.lower())
        if sku:
            return sku
        known = ", ".join(sorted(s.sku_part_number for s in self.skus if s.sku_part_number))
        raise LicenseResolutionError(
            f"License '{value}' matches no subscribed SKU"
            + (f" (known: {known})" if known else "")
        )
