"""
Licensing data models — SKUs, assignment records, and removal outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


# Removal outcomes
OUTCOME_REMOVED = "Removed"
OUTCOME_NOT_ASSIGNED = "NotAssigned"   # Nothing to remove; counted as success
OUTCOME_WHAT_IF = "WhatIf"
OUTCOME_FAILED = "Failed"

SUCCESS_OUTCOMES = (OUTCOME_REMOVED, OUTCOME_NOT_ASSIGNED, OUTCOME_WHAT_IF)


@dataclass
class SubscribedSku:
    """A SKU the tenant has purchased."""
    sku_id: str
    sku_part_number: str = ""
    consumed_units: int = 0
    enabled_units: int = 0

    @property
    def available_units(self) -> int:
        return self.enabled_units - self.consumed_units

    @property
    def label(self) -> str:
        return self.sku_part_number or self.sku_id

    @classmethod
    def from_graph(cls, data: dict) -> "SubscribedSku":
        return cls(
            sku_id=(data.get("skuId") or "").lower(),
            sku_part_number=data.get("skuPartNumber") or "",
            consumed_units=data.get("consumedUnits") or 0,
            enabled_units=(data.get("prepaidUnits") or {}).get("enabled") or 0,
        )


@dataclass
class LicenseAssignment:
    """One user's hold on one SKU, from a licenseAssignmentStates entry."""
    display_name: str
    user_principal_name: str
    user_id: str
    sku_id: str
    sku_part_number: str = ""
    assigned_directly: bool = True
    assigned_by_group: str = ""
    state: str = ""

    def to_row(self) -> dict:
        return {
            "DisplayName": self.display_name,
            "UserPrincipalName": self.user_principal_name,
            "UserId": self.user_id,
            "SkuId": self.sku_id,
            "SkuPartNumber": self.sku_part_number,
            "AssignedDirectly": self.assigned_directly,
            "AssignedByGroup": self.assigned_by_group,
            "State": self.state,
        }


@dataclass
class RemovalRequest:
    """A parsed input row: remove `license` from `user_principal_name`."""
    row_number: int
    user_principal_name: str
    license: str
    sku_id: str = ""
    sku_part_number: str = ""


@dataclass
class RemovalResult:
    """Outcome of removing one license from one user."""
    user_principal_name: str
    sku_id: str
    outcome: str
    attempts: int = 0
    sku_part_number: str = ""
    status_code: Optional[int] = None
    message: str = ""
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def succeeded(self) -> bool:
        return self.outcome in SUCCESS_OUTCOMES

    def to_row(self) -> dict:
        return {
            "UserPrincipalName": self.user_principal_name,
            "SkuId": self.sku_id,
            "SkuPartNumber": self.sku_part_number,
            "Outcome": self.outcome,
            "Attempts": self.attempts,
            "StatusCode": "" if self.status_code is None else self.status_code,
            "Message": self.message,
            "Timestamp": self.timestamp,
        }


@dataclass
class RemovalSummary:
    """Aggregate of a removal run."""
    results: list[RemovalResult] = field(default_factory=list)
    aborted: bool = False
    interrupted: bool = False
    what_if: bool = False
    throttle_events: int = 0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successes(self) -> list[RemovalResult]:
        return [r for r in self.results if r.succeeded]

    @property
    def failures(self) -> list[RemovalResult]:
        return [r for r in self.results if not r.succeeded]

    def count(self, outcome: str) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "succeeded": len(self.successes),
            "failed": len(self.failures),
            "removed": self.count(OUTCOME_REMOVED),
            "not_assigned": self.count(OUTCOME_NOT_ASSIGNED),
            "what_if": self.count(OUTCOME_WHAT_IF),
            "throttle_events": self.throttle_events,
            "aborted": self.aborted,
            "interrupted": self.interrupted,
        }
