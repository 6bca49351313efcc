"""
Safety Guardian — Restricts which Graph writes a command may perform.
Read-only commands may not write at all; the removal command may only call
assignLicense on a user. Every check is counted and violations are audited.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("m365_license_tools.safety")

# ─── Modes ───────────────────────────────────────────────────────────────────

MODE_READ_ONLY = "read-only"
MODE_LICENSE_REMOVAL = "license-removal"

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# The only write permitted in license-removal mode
ASSIGN_LICENSE_ENDPOINT = re.compile(r"/users/[^/?]+/assignLicense$", re.IGNORECASE)


class SafetyViolation(Exception):
    """Raised when a disallowed write operation is attempted."""
    pass


class SafetyGuardian:
    """
    Validates every outbound HTTP request against the active mode.
    Maintains an audit log of all safety checks and violations.
    """

    def __init__(self, mode: str = MODE_READ_ONLY):
        if mode not in (MODE_READ_ONLY, MODE_LICENSE_REMOVAL):
            raise ValueError(f"Unknown safety mode: {mode}")
        self.mode = mode
        self.violations: list[dict] = []
        self.checks_performed: int = 0
        self.writes_allowed: int = 0
        self.started_at: str = _utc_now()

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        """
        Validate a request for the current mode.
        Returns True if allowed, raises SafetyViolation if not.
        """
        self.checks_performed += 1
        method_upper = method.upper()

        if method_upper in ("GET", "HEAD", "OPTIONS"):
            return True

        path = url.split("?", 1)[0]
        if (
            self.mode == MODE_LICENSE_REMOVAL
            and method_upper == "POST"
            and ASSIGN_LICENSE_ENDPOINT.search(path)
        ):
            if body and body.get("addLicenses"):
                self._record_violation(method_upper, url, "License assignment blocked")
                raise SafetyViolation(
                    f"SAFETY VIOLATION: Adding licenses is not permitted: {method_upper} {url}"
                )
            self.writes_allowed += 1
            return True

        reason = (
            "Write HTTP method blocked"
            if self.mode == MODE_READ_ONLY
            else "Write outside assignLicense blocked"
        )
        self._record_violation(method_upper, url, reason)
        raise SafetyViolation(
            f"SAFETY VIOLATION: {reason}: {method_upper} {url}"
        )

    def _record_violation(self, method: str, url: str, reason: str):
        """Record a safety violation for audit."""
        violation = {
            "timestamp": _utc_now(),
            "method": method,
            "url": url,
            "reason": reason,
        }
        self.violations.append(violation)
        logger.critical(f"SAFETY VIOLATION: {reason} — {method} {url}")

    def get_audit_record(self) -> dict:
        """Return the full safety audit record."""
        return {
            "safety_guardian": {
                "mode": self.mode,
                "started_at": self.started_at,
                "checks_performed": self.checks_performed,
                "writes_allowed": self.writes_allowed,
                "violations_detected": len(self.violations),
                "violations": self.violations,
                "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
            }
        }

    def print_banner(self, what_if: bool = False):
        """Print a banner describing what this run is allowed to change."""
        print("=" * 75)
        if self.mode == MODE_READ_ONLY:
            print("  READ-ONLY RUN -- NO CHANGES WILL BE MADE")
            print("  * All API calls are GET/read-only")
        elif what_if:
            print("  WHAT-IF RUN -- LICENSE REMOVALS WILL ONLY BE SIMULATED")
            print("  * No assignLicense calls will be sent")
        else:
            print("  LICENSE REMOVAL RUN -- LICENSES WILL BE REMOVED FROM USERS")
            print("  * Only POST /users/{id}/assignLicense (removeLicenses) is permitted")
        print("  * Safety Guardian validates every request before execution")
        print("=" * 75)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
